"""pkiforge command-line interface."""
