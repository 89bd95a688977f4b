"""Funds operations: money parsing, row disambiguation and the transaction state machine.

Modules:

* ``money``: localized money parsing and text normalization.
* ``rows``: exact-match selection of the target row in the users listing.
* ``operation``: Spanish operation aliases (``carga``, ``descarga`` ...).
* ``machine``: ``FundsTransaction`` and ``BalanceQuery`` step sequences.
"""
