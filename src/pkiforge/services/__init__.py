"""Services built on the authority engine: OCSP and the PKI environment."""
