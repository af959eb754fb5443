"""
Bitcoin primitives: addresses, scripts, transactions, signature hashes,
PSBTs, descriptors and witness verification.
"""
