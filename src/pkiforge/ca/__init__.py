"""Certificate authority engine.

Submodules:

- :mod:`pkiforge.ca.keys` -- key generation and persistence
- :mod:`pkiforge.ca.policy` -- named issuance policies
- :mod:`pkiforge.ca.authority` -- the signing authority
- :mod:`pkiforge.ca.crl` -- CRL generation
- :mod:`pkiforge.ca.storage` -- on-disk layout of an authority
"""
