"""Magic-link tokens: signing, validation, revocation and analytics"""
