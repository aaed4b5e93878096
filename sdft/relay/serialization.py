import typing
import json
import logging
from sdft.error import (
    MalformedMessageError, UnexpectedMessageError, MissingTransferTypeError, MissingFileInfoError,
    MissingClientCodeError
)

log = logging.getLogger(__name__)

UPLOAD = 'upload'
DOWNLOAD = 'download'

FILE = 'file'
DIRECTORY = 'directory'
FILE_TYPES = (FILE, DIRECTORY)

FINALIZE_HANDSHAKE = 'FINALIZE_HANDSHAKE'
PIPING_COMPLETE = 'PIPING_COMPLETE'

# sent by the downloader once it can receive payload, not json framed
READY = b'READY'

RECORD_SEPARATOR = b'\n'


class TransferMessage:

    def to_dict(self) -> typing.Dict:
        raise NotImplementedError()

    def serialize(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(',', ':')).encode() + RECORD_SEPARATOR

    def __eq__(self, other):
        return type(self) is type(other) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"{type(self).__name__}({self.to_dict()!r})"


class UploadIntent(TransferMessage):
    transfer_type = UPLOAD

    def __init__(self, file_name: str, file_type: str, file_size: typing.Optional[int] = None,
                 password: typing.Optional[str] = None, local_ip: typing.Optional[str] = None) -> None:
        self.file_name = file_name
        self.file_type = file_type
        self.file_size = file_size
        self.password = password
        self.local_ip = local_ip

    def to_dict(self) -> typing.Dict:
        d = {
            'transferType': self.transfer_type,
            'fileName': self.file_name,
            'fileType': self.file_type,
        }
        if self.file_size is not None:
            d['fileSize'] = self.file_size
        if self.password:
            d['password'] = self.password
        if self.local_ip:
            d['localIP'] = self.local_ip
        return d


class DownloadIntent(TransferMessage):
    transfer_type = DOWNLOAD

    def __init__(self, client_code: str, password: typing.Optional[str] = None,
                 local_ip: typing.Optional[str] = None) -> None:
        self.client_code = client_code
        self.password = password
        self.local_ip = local_ip

    def to_dict(self) -> typing.Dict:
        d = {
            'transferType': self.transfer_type,
            'clientCode': self.client_code,
        }
        if self.password:
            d['password'] = self.password
        if self.local_ip:
            d['localIP'] = self.local_ip
        return d


class FinalizeHandshake(TransferMessage):
    seq = FINALIZE_HANDSHAKE

    def __init__(self, code: str) -> None:
        self.code = code

    def to_dict(self) -> typing.Dict:
        return {
            'seq': self.seq,
            'code': self.code
        }


class PipingComplete(TransferMessage):
    seq = PIPING_COMPLETE

    def __init__(self, file_type: str, file_name: str, file_size: typing.Optional[int] = None) -> None:
        self.file_type = file_type
        self.file_name = file_name
        self.file_size = file_size

    def to_dict(self) -> typing.Dict:
        return {
            'seq': self.seq,
            'fileType': self.file_type,
            'fileName': self.file_name,
            'fileSize': self.file_size,
        }


class ErrorResponse(TransferMessage):
    key = 'error'

    def __init__(self, error: str) -> None:
        self.error = error

    def to_dict(self) -> typing.Dict:
        return {
            self.key: self.error
        }


intent_types = typing.Union[UploadIntent, DownloadIntent]
response_types = typing.Union[FinalizeHandshake, PipingComplete, ErrorResponse]


def _decode(data: bytes) -> typing.Dict:
    try:
        message = json.loads(data.decode())
    except (UnicodeDecodeError, ValueError) as err:
        raise MalformedMessageError("not valid json") from err
    if not isinstance(message, dict):
        raise MalformedMessageError("expected a json object")
    return message


def _optional_string(message: typing.Dict, key: str) -> typing.Optional[str]:
    value = message.get(key)
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise MalformedMessageError(f"'{key}' must be a string")
    return value


def _optional_size(message: typing.Dict, key: str) -> typing.Optional[int]:
    value = message.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedMessageError(f"'{key}' must be a non negative integer")
    return value


def parse_intent(data: bytes) -> intent_types:
    """
    Decode the first message a client sends. Raises a ProtocolError for
    anything that isn't a json object and a ValidationError for missing fields.
    """
    request = _decode(data)
    transfer_type = request.get('transferType')
    if not transfer_type:
        raise MissingTransferTypeError()
    password = _optional_string(request, 'password')
    local_ip = _optional_string(request, 'localIP')
    if transfer_type == UPLOAD:
        file_name = _optional_string(request, 'fileName')
        file_type = _optional_string(request, 'fileType')
        if not file_name or not file_type:
            raise MissingFileInfoError()
        if file_type not in FILE_TYPES:
            raise MalformedMessageError(f"unknown file type '{file_type}'")
        return UploadIntent(file_name, file_type, _optional_size(request, 'fileSize'), password, local_ip)
    if transfer_type == DOWNLOAD:
        client_code = _optional_string(request, 'clientCode')
        if not client_code:
            raise MissingClientCodeError()
        return DownloadIntent(client_code, password, local_ip)
    raise MalformedMessageError(f"unknown transfer type '{transfer_type}'")


def parse_response(data: bytes) -> response_types:
    response = _decode(data)
    if ErrorResponse.key in response:
        return ErrorResponse(str(response[ErrorResponse.key]))
    seq = response.get('seq')
    if seq == FINALIZE_HANDSHAKE:
        code = _optional_string(response, 'code')
        if not code:
            raise MalformedMessageError("handshake response is missing the code")
        return FinalizeHandshake(code)
    if seq == PIPING_COMPLETE:
        file_name = _optional_string(response, 'fileName')
        file_type = _optional_string(response, 'fileType')
        if not file_name or file_type not in FILE_TYPES:
            raise MalformedMessageError("pairing response is missing file information")
        return PipingComplete(file_type, file_name, _optional_size(response, 'fileSize'))
    raise UnexpectedMessageError(f"{FINALIZE_HANDSHAKE} or {PIPING_COMPLETE}", seq and str(seq))
