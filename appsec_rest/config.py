"""Load connection settings from a YAML file with environment overrides."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Type, TypeVar

import yaml  # type: ignore
from dotenv import load_dotenv

from .connection_config import ConnectionConfig, ProxyConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=ConnectionConfig)


def parse_bool(v: Optional[str], default: bool) -> bool:
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def read_config_section(config_path: Optional[str], section: str) -> Dict[str, Any]:
    if not config_path:
        return {}
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Config by path {config_path} not exist")
    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {config_path} must contain a mapping at top level")
    return data.get(section, {}) or {}


def load_connection_config(config_path: Optional[str], section: str,
                           config_cls: Type[C] = ConnectionConfig,  # type: ignore[assignment]
                           dotenv_path: Optional[str] = None) -> C:
    """
    Build a ``config_cls`` from section ``section`` of the YAML file.

    ``<SECTION>_URI``, ``_URL``, ``_USER``, ``_PASSWORD``, ``_TOKEN``,
    ``_VERIFY_SSL`` and ``_PROXY`` environment variables win over file values.
    A token is only honoured by config classes with a ``token`` attribute.
    """
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path)
    data = read_config_section(config_path, section)
    prefix = section.upper()

    def _setting(name: str) -> Any:
        return os.environ.get(f"{prefix}_{name.upper()}") or data.get(name)

    cfg = config_cls()
    uri = _setting("uri")
    url = _setting("url")
    if uri:
        cfg.set_uri(uri)
    elif url:
        cfg.base_url = url
    else:
        raise ConfigurationError(f"Missing {section} URI ({section}.uri, {section}.url, {prefix}_URI or {prefix}_URL).")

    user = _setting("user")
    if user:
        cfg.credentials = f"{user}:{_setting('password') or ''}"
    token = _setting("token")
    if token:
        if not hasattr(cfg, "token"):
            raise ConfigurationError(f"{config_cls.__name__} does not support token authentication")
        setattr(cfg, "token", token)

    properties = data.get("connection_properties")
    if properties:
        cfg.connection_properties = {**cfg.connection_properties, **properties}

    cfg.verify_ssl = parse_bool(os.environ.get(f"{prefix}_VERIFY_SSL"), bool(data.get("verify_ssl", True)))

    proxy = os.environ.get(f"{prefix}_PROXY") or data.get("proxy")
    if isinstance(proxy, dict):
        if not proxy.get("url"):
            raise ConfigurationError(f"{section}.proxy requires a url")
        cfg.proxy = ProxyConfig.from_url(proxy["url"], proxy.get("username"), proxy.get("password"))
    elif proxy:
        cfg.proxy = proxy

    logger.debug(f"Loaded {section} connection config for {cfg.base_url}")
    return cfg
