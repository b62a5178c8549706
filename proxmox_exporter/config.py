"""
Exporter configuration.

Sources, lowest to highest precedence: built-in defaults, an optional YAML
config file, environment variables, explicit command line flags.
"""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

DEFAULT_LISTEN_ADDRESS = "127.0.0.1:9914"

LOG_LEVELS = {
    "none": None,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# config file key -> Config field
FILE_KEYS = {
    "proxmox_address": "proxmox_address",
    "proxmox_port": "proxmox_port",
    "proxmox_username": "username",
    "proxmox_token": "token",
    "proxmox_verify_ssl": "verify_ssl",
    "request_timeout": "request_timeout",
    "refresh_interval": "refresh_interval",
    "max_workers": "max_workers",
    "scrape_timeout": "scrape_timeout",
    "listen_address": "listen_address",
    "log_level": "log_level",
}

# environment variable -> Config field
ENV_KEYS = {
    "PROXMOX_ADDRESS": "proxmox_address",
    "PROXMOX_PORT": "proxmox_port",
    "PROXMOX_USERNAME": "username",
    "PROXMOX_TOKEN": "token",
    "PROXMOX_VERIFY_SSL": "verify_ssl",
    "PROXMOX_TIMEOUT": "request_timeout",
    "REFRESH_INTERVAL": "refresh_interval",
    "MAX_WORKERS": "max_workers",
    "SCRAPE_TIMEOUT": "scrape_timeout",
    "LISTEN_ADDRESS": "listen_address",
    "LOG_LEVEL": "log_level",
}


class ConfigError(Exception):
    pass


@dataclass
class Config:
    proxmox_address: str = "127.0.0.1"
    proxmox_port: int = 8006
    username: str = ""
    token: str = ""
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    log_level: str = "none"
    verify_ssl: bool = False
    request_timeout: float = 10.0
    refresh_interval: float = 300.0
    max_workers: int = 8
    scrape_timeout: float = 30.0

    @property
    def base_url(self):
        return f"https://{self.proxmox_address}:{self.proxmox_port}/api2/json"

    @property
    def auth_header(self):
        return f"PVEAPIToken={self.username}={self.token}"

    @property
    def listen_host(self):
        return split_address(self.listen_address)[0]

    @property
    def listen_port(self):
        return split_address(self.listen_address)[1]

    @property
    def logging_level(self):
        return LOG_LEVELS[self.log_level]


def split_address(address):
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address {address!r}, expected host:port")
    return host.strip("[]") or "0.0.0.0", int(port)


def parse_bool(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


_CONVERTERS = {
    "proxmox_port": int,
    "max_workers": int,
    "request_timeout": float,
    "refresh_interval": float,
    "scrape_timeout": float,
    "verify_ssl": parse_bool,
}


def _convert(name, value, source):
    convert = _CONVERTERS.get(name, str)
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name} from {source}: {value!r} ({e})") from e


def load_config_file(path):
    """Config fields found in a YAML file"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    values = {}
    for key, value in data.items():
        name = FILE_KEYS.get(key)
        if name is not None and value is not None:
            values[name] = _convert(name, value, path)
    return values


def load_environment(environ):
    values = {}
    for key, name in ENV_KEYS.items():
        value = environ.get(key)
        if value:
            values[name] = _convert(name, value, key)
    return values


def build_parser():
    parser = argparse.ArgumentParser(
        prog="proxmox-exporter",
        description="Prometheus exporter for Proxmox VE clusters",
    )
    parser.add_argument("--config.file", dest="config_file", default=None,
                        help="Path to a YAML configuration file (env CONFIG_FILE)")
    parser.add_argument("--listen.address", dest="listen_address", default=None,
                        help=f"Address to bind (env LISTEN_ADDRESS, default {DEFAULT_LISTEN_ADDRESS})")
    parser.add_argument("--log.level", dest="log_level", default=None,
                        help="Logging level: none, debug, info, warn, error (env LOG_LEVEL, default none)")
    return parser


def load_config(argv=None, environ=None):
    """Build and validate a Config; raises ConfigError"""
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    values = {}
    config_file = args.config_file or environ.get("CONFIG_FILE")
    if config_file:
        values.update(load_config_file(config_file))
    values.update(load_environment(environ))
    if args.listen_address:
        values["listen_address"] = args.listen_address
    if args.log_level:
        values["log_level"] = args.log_level

    known = {f.name for f in fields(Config)}
    config = Config(**{k: v for k, v in values.items() if k in known})
    validate(config)
    return config


def validate(config):
    missing = [name for name, value in (("PROXMOX_USERNAME", config.username), ("PROXMOX_TOKEN", config.token))
               if not value]
    if missing:
        raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")

    config.log_level = config.log_level.lower()
    if config.log_level not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level {config.log_level!r}, expected one of {', '.join(LOG_LEVELS)}")

    split_address(config.listen_address)

    if config.max_workers < 1:
        raise ConfigError("max_workers must be at least 1")
    for name in ("request_timeout", "refresh_interval", "scrape_timeout"):
        if getattr(config, name) <= 0:
            raise ConfigError(f"{name} must be positive")
