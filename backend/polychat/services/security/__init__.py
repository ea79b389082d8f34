from polychat.services.security.credentials import CredentialCipher

__all__ = ["CredentialCipher"]
