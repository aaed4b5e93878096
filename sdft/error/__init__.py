from .base import BaseError


class ProtocolError(BaseError):
    """
    Malformed or out of sequence messages, always fatal to the connection.
    """


class MalformedMessageError(ProtocolError):

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Malformed message: {reason}")


class UnexpectedMessageError(ProtocolError):

    def __init__(self, expected, received=None):
        self.expected = expected
        self.received = received
        if received:
            super().__init__(f"Invalid response during handshake, expected {expected} but got {received}")
        else:
            super().__init__(f"Invalid response during handshake, expected {expected}")


class MessageTooLargeError(ProtocolError):

    def __init__(self, limit):
        self.limit = limit
        super().__init__(f"Message exceeds the maximum size of {limit} bytes")


class EarlyPayloadError(ProtocolError):
    """
    Uploader sent data before a downloader was paired with it.
    """

    def __init__(self):
        super().__init__("Unexpected data before pairing")


class ValidationError(BaseError):
    """
    Handshake requests rejected by the server, reported to the client as an error message.
    """


class MissingTransferTypeError(ValidationError):

    def __init__(self):
        super().__init__("Missing transfer type")


class MissingFileInfoError(ValidationError):

    def __init__(self):
        super().__init__("Missing file name or type")


class MissingClientCodeError(ValidationError):

    def __init__(self):
        super().__init__("Missing client code")


class DownloadNotFoundError(ValidationError):
    """
    Also raised when the code belongs to a session that is not an upload.
    """

    def __init__(self):
        super().__init__("Download ID not found")


class DownloadBusyError(ValidationError):

    def __init__(self):
        super().__init__("Download ID busy")


class PasswordMismatchError(ValidationError):

    def __init__(self):
        super().__init__("Password does not match")


class HandshakeRejectedError(ValidationError):
    """
    Client side view of an error message sent by the server.
    """

    def __init__(self, message):
        self.message = message
        super().__init__(message)


class RegistryError(BaseError):
    """
    **Session Registry**
    """


class CodeCollisionError(RegistryError):

    def __init__(self, code):
        self.code = code
        super().__init__(f"Code '{code}' is already registered.")


class CodeSpaceExhaustedError(RegistryError):

    def __init__(self, code_length):
        self.code_length = code_length
        super().__init__(f"No free transfer codes of length {code_length} remain.")


class TransferError(BaseError):
    """
    **Transfers**
    """


class TransportError(TransferError):

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Connection failed: {reason}")


class InvalidUploadPathError(TransferError):

    def __init__(self, path):
        self.path = path
        super().__init__(f"File not found or not a regular file / directory: {path}")


class ArchiveError(TransferError):

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to process archive '{path}': {reason}")


class ConfigurationError(BaseError):
    """
    Configuration errors.
    """


class ConfigReadError(ConfigurationError):
    """
    Can't open the config file user provided via command line args.
    """

    def __init__(self, path):
        super().__init__(f"Cannot find provided configuration file '{path}'.")


class ConfigParseError(ConfigurationError):

    def __init__(self, path):
        super().__init__(f"Failed to parse the configuration file '{path}'.")


class CertificateMissingError(ConfigurationError):
    """
    TLS certificate or key file configured for the server does not exist.
    """

    def __init__(self, path):
        self.path = path
        super().__init__(f"Certificate file '{path}' does not exist, run with --generate-cert to create one.")
