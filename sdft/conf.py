import os
import typing
import logging
from argparse import ArgumentParser
from appdirs import user_data_dir, user_config_dir
import yaml
from sdft.error import ConfigReadError, ConfigParseError

log = logging.getLogger(__name__)


NOT_SET = type('NOT_SET', (object,), {})  # pylint: disable=invalid-name
T = typing.TypeVar('T')

DEFAULT_PORT = 9966
DEFAULT_ALLOWED_CHARS = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'


class Setting(typing.Generic[T]):

    def __init__(self, doc: str, default: typing.Optional[T] = None,
                 previous_names: typing.Optional[typing.List[str]] = None,
                 metavar: typing.Optional[str] = None, short_name: typing.Optional[str] = None):
        self.doc = doc
        self.default = default
        self.previous_names = previous_names or []
        self.metavar = metavar
        self.short_name = short_name

    def __set_name__(self, owner, name):
        self.name = name  # pylint: disable=attribute-defined-outside-init

    @property
    def cli_name(self):
        return f"--{self.name.replace('_', '-')}"

    @property
    def cli_names(self):
        if self.short_name:
            return [self.short_name, self.cli_name]
        return [self.cli_name]

    @property
    def no_cli_name(self):
        return f"--no-{self.name.replace('_', '-')}"

    def __get__(self, obj: typing.Optional['BaseConfig'], owner) -> T:
        if obj is None:
            return self
        for location in obj.search_order:
            if self.name in location:
                return location[self.name]
        return self.default

    def __set__(self, obj: 'BaseConfig', val: typing.Union[T, NOT_SET]):
        if val == NOT_SET:
            for location in obj.modify_order:
                if self.name in location:
                    del location[self.name]
        else:
            self.validate(val)
            for location in obj.modify_order:
                location[self.name] = val

    def validate(self, value):
        raise NotImplementedError()

    def deserialize(self, value):  # pylint: disable=no-self-use
        return value

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            *self.cli_names,
            dest=self.name,
            help=self.doc,
            metavar=self.metavar,
            default=NOT_SET
        )


class String(Setting[str]):
    def validate(self, value):
        assert isinstance(value, str), \
            f"Setting '{self.name}' must be a string."


class Integer(Setting[int]):
    def validate(self, value):
        assert isinstance(value, int), \
            f"Setting '{self.name}' must be an integer."

    def deserialize(self, value):
        return int(value)


class Port(Integer):
    def validate(self, value):
        super().validate(value)
        assert 0 <= value <= 65535, \
            f"Setting '{self.name}' must be a port number between 0 and 65535."


class Toggle(Setting[bool]):
    def validate(self, value):
        assert isinstance(value, bool), \
            f"Setting '{self.name}' must be a true/false value."

    def deserialize(self, value):
        if isinstance(value, str):
            return value.lower() in ('1', 'true', 'yes', 'on')
        return bool(value)

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            self.cli_name,
            help=self.doc,
            dest=self.name,
            action="store_true",
            default=NOT_SET
        )
        parser.add_argument(
            self.no_cli_name,
            help=f"Opposite of {self.cli_name}",
            dest=self.name,
            action="store_false",
            default=NOT_SET
        )


class Path(String):
    def __init__(self, doc: str, *args, default: str = '', **kwargs):
        super().__init__(doc, default, *args, **kwargs)

    def __get__(self, obj, owner) -> str:
        value = super().__get__(obj, owner)
        if isinstance(value, str):
            return os.path.expanduser(os.path.expandvars(value))
        return value


class Alphabet(String):
    def validate(self, value):
        super().validate(value)
        assert len(set(value)) >= 2, \
            f"Setting '{self.name}' must contain at least two distinct characters."


class EnvironmentAccess:
    PREFIX = 'DFT_'

    def __init__(self, config: 'BaseConfig', environ: dict):
        self.configuration = config
        self.data = {}
        if environ:
            self.load(environ)

    def load(self, environ):
        for setting in self.configuration.get_settings():
            value = environ.get(f'{self.PREFIX}{setting.name.upper()}', NOT_SET)
            if value != NOT_SET:
                self.data[setting.name] = setting.deserialize(value)

    def __contains__(self, item: str):
        return item in self.data

    def __getitem__(self, item: str):
        return self.data[item]


class ArgumentAccess:

    def __init__(self, config: 'BaseConfig', args):
        self.configuration = config
        self.args = {}
        if args:
            self.load(args)

    def load(self, args):
        for setting in self.configuration.get_settings():
            value = getattr(args, setting.name, NOT_SET)
            if value != NOT_SET and value is not None:
                self.args[setting.name] = setting.deserialize(value)

    def __contains__(self, item: str):
        return item in self.args

    def __getitem__(self, item: str):
        return self.args[item]


class ConfigFileAccess:

    def __init__(self, config: 'BaseConfig', path: str):
        self.configuration = config
        self.path = path
        self.data = {}
        if self.exists:
            self.load()

    @property
    def exists(self):
        return self.path and os.path.exists(self.path)

    def load(self):
        cls = type(self.configuration)
        with open(self.path, 'r') as config_file:
            raw = config_file.read()
        try:
            serialized = yaml.safe_load(raw) or {}
        except yaml.YAMLError as err:
            raise ConfigParseError(self.path) from err
        if not isinstance(serialized, dict):
            raise ConfigParseError(self.path)
        for key, value in serialized.items():
            attr = getattr(cls, key, None)
            if not isinstance(attr, Setting):
                attr = None
                for setting in self.configuration.settings:
                    if key in setting.previous_names:
                        attr = setting
                        break
            if attr is not None:
                self.data[attr.name] = attr.deserialize(value)
            else:
                log.warning("ignoring unknown setting '%s' in %s", key, self.path)

    def __contains__(self, item: str):
        return item in self.data

    def __getitem__(self, item: str):
        return self.data[item]


TBC = typing.TypeVar('TBC', bound='BaseConfig')


class BaseConfig:

    config = Path("Path to configuration file.", metavar='FILE')

    def __init__(self, **kwargs):
        self.runtime = {}      # set internally or by tests
        self.arguments = {}    # from command line arguments
        self.environment = {}  # from environment variables
        self.persisted = {}    # from config file
        for key, value in kwargs.items():
            setattr(self, key, value)

    @property
    def modify_order(self):
        return [self.runtime]

    @property
    def search_order(self):
        return [
            self.runtime,
            self.arguments,
            self.environment,
            self.persisted
        ]

    @classmethod
    def get_settings(cls):
        for attr in dir(cls):
            setting = getattr(cls, attr)
            if isinstance(setting, Setting):
                yield setting

    @property
    def settings(self):
        return self.get_settings()

    @property
    def settings_dict(self):
        return {
            setting.name: getattr(self, setting.name) for setting in self.settings
        }

    @classmethod
    def create_from_arguments(cls: typing.Type[TBC], args, environ=None) -> TBC:
        conf = cls()
        conf.set_arguments(args)
        conf.set_environment(environ)
        conf.set_persisted()
        return conf

    @classmethod
    def contribute_to_argparse(cls, parser: ArgumentParser):
        for setting in cls.get_settings():
            setting.contribute_to_argparse(parser)

    def set_arguments(self, args):
        self.arguments = ArgumentAccess(self, args)

    def set_environment(self, environ=None):
        self.environment = EnvironmentAccess(self, os.environ if environ is None else environ)

    def set_persisted(self, config_file_path=None):
        explicit = config_file_path is not None or 'config' in self.arguments or 'config' in self.environment
        if config_file_path is None:
            config_file_path = self.config

        if not config_file_path:
            return

        ext = os.path.splitext(config_file_path)[1]
        assert ext in ('.yml', '.yaml'),\
            f"File extension '{ext}' is not supported, " \
            f"configuration file must be in YAML (.yaml)."

        if explicit and not os.path.exists(config_file_path):
            raise ConfigReadError(config_file_path)

        self.persisted = ConfigFileAccess(self, config_file_path)


class ClientConfig(BaseConfig):

    config = Path(
        "Path to configuration file.", metavar='FILE',
        default=os.path.join(user_config_dir('sdft'), 'client.yml')
    )

    host = String('Host of the transfer server.', 'localhost', metavar='HOST', short_name='-l')
    port = Port('Port of the transfer server.', DEFAULT_PORT, metavar='PORT', short_name='-n')
    ca_file = Path(
        "CA bundle used to verify the server certificate, the certificate is not verified when unset.",
        metavar='FILE'
    )
    cert_file = Path("Client certificate presented to the server.", metavar='FILE')
    key_file = Path("Private key of the client certificate.", metavar='FILE')
    download_dir = Path("Directory where downloaded files are extracted.", default='.', metavar='DIR')
    relay_chunk_size = Integer("Number of bytes read from disk and written to the connection at once.", 65536)
    progress = Toggle("Render progress bars while transferring.", True)


class ServerConfig(BaseConfig):

    config = Path(
        "Path to configuration file.", metavar='FILE',
        default=os.path.join(user_config_dir('sdft'), 'server.yml')
    )

    interface = String("Interface to listen on for incoming transfers.", '0.0.0.0', metavar='HOST')
    port = Port("TCP port to listen on for incoming transfers.", DEFAULT_PORT, metavar='PORT')
    cert_file = Path(
        "TLS certificate presented to clients.", metavar='FILE',
        default=os.path.join(user_data_dir('sdft'), 'cert', 'cert.pem')
    )
    key_file = Path(
        "Private key of the TLS certificate.", metavar='FILE',
        default=os.path.join(user_data_dir('sdft'), 'cert', 'key.pem')
    )
    code_size = Integer("Number of characters in a transfer code.", 5, previous_names=['codeSize'])
    allowed_chars = Alphabet("Characters transfer codes are drawn from.", DEFAULT_ALLOWED_CHARS,
                             previous_names=['allowedChars'])
    max_message_size = Integer("Maximum size in bytes of a handshake message.", 65536)
    relay_chunk_size = Integer("Maximum number of bytes relayed per read between paired clients.", 65536)
    prometheus_port = Port("Port to expose prometheus metrics (off by default)", 0)
