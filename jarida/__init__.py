# -*- coding: utf-8 -*-
"""Jarida encrypted journal storage engine.

Modules:
    errors:  Exception taxonomy shared by every component.
    crypto:  argon2id key derivation, scoped secrets, AES-GCM entry codec.
    locate:  Journal root discovery (upward walk + home fallback) and init.
    store:   Entry ids, atomic writes, reads, listing and in-place updates.
    logic:   Config loading and scoped journal sessions.
"""

__all__ = ["crypto", "errors", "locate", "logic", "store"]
