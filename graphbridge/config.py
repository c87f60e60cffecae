"""
Configuration Resolver - validates server/table options and setup files

Options arrive as string dictionaries, exactly as written in an
OPTIONS (...) clause. Resolution either returns a complete, immutable
ForeignServer / ForeignTable or raises ConfigurationError; nothing is ever
half-configured.

Setup files are YAML documents mirroring a DDL setup script:

    servers:
      - name: linear_server
        options:
          api_url: https://api.linear.app/graphql
          api_key: ${LINEAR_API_KEY:}
          fdw_package_url: file:///linear_fdw.wasm
          fdw_package_name: supabase:linear-fdw
          fdw_package_version: 0.1.0
    tables:
      - name: issues
        schema: linear
        server: linear_server
        columns: [id text, title text]
        options: {object: issues}
    imports:
      - server: linear_server
        into: linear
"""

import logging
import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import jsonschema
import yaml

from graphbridge.catalog.objects import column as build_column
from graphbridge.core.models import (
    ClientSettings,
    ColumnDefinition,
    Credential,
    ForeignServer,
    ForeignTable,
    PackageIdentity,
)
from graphbridge.core.types import parse_type_name
from graphbridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

SERVER_OPTIONS = frozenset(
    [
        "api_url",
        "api_key",
        "api_key_id",
        "fdw_package_url",
        "fdw_package_name",
        "fdw_package_version",
        "allow_anonymous",
        "auth_scheme",
        "timeout",
        "max_attempts",
        "backoff_base",
        "max_backoff",
        "page_size",
    ]
)

REQUIRED_SERVER_OPTIONS = ("api_url", "fdw_package_url", "fdw_package_name", "fdw_package_version")

AUTH_SCHEMES = ("raw", "bearer")

_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VERSION = re.compile(r"^\d+\.\d+\.\d+([-+][0-9A-Za-z.-]+)?$")
_ENV_VAR = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

_TRUE = {"true", "t", "yes", "y", "on", "1"}
_FALSE = {"false", "f", "no", "n", "off", "0"}


class SecretStore(Protocol):
    """Where api_key_id references are looked up"""

    def get(self, key_id: str) -> str | None: ...


class EnvironmentSecretStore:
    """Secret store backed by environment variables (or any mapping)"""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self.environ = os.environ if environ is None else environ

    def get(self, key_id: str) -> str | None:
        return self.environ.get(key_id)


class ConfigurationResolver:
    """
    Validate and normalize creation-time options

    Example:
        resolver = ConfigurationResolver(catalog)
        server = resolver.resolve_server("linear_server", {...})
        table = resolver.resolve_table("issues", server, {"object": "issues"})
    """

    def __init__(self, catalog, secrets: SecretStore | None = None):
        """
        Initialize resolver

        Args:
            catalog: SchemaCatalog used to recognize object names
            secrets: Store for api_key_id lookups (default: environment)
        """
        self.catalog = catalog
        self.secrets = secrets or EnvironmentSecretStore()

    def resolve_server(self, name: str, options: Mapping[str, Any]) -> ForeignServer:
        """
        Build a ForeignServer from its options

        Raises:
            ConfigurationError: If any option is missing, unknown or invalid
        """
        subject = f"server '{name}'"
        _check_name(name, subject)
        opts = _stringify(options)

        unknown = sorted(set(opts) - SERVER_OPTIONS)
        if unknown:
            raise ConfigurationError(
                f"unknown option(s) {', '.join(unknown)}; valid options: {', '.join(sorted(SERVER_OPTIONS))}",
                subject,
            )

        missing = [opt for opt in REQUIRED_SERVER_OPTIONS if not opts.get(opt)]
        if missing:
            raise ConfigurationError(f"missing required option(s) {', '.join(missing)}", subject)

        api_url = opts["api_url"]
        parsed = urlparse(api_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"api_url must be an http(s) URL, got '{api_url}'", subject)

        version = opts["fdw_package_version"]
        if not _VERSION.match(version):
            raise ConfigurationError(
                f"fdw_package_version must look like MAJOR.MINOR.PATCH, got '{version}'", subject
            )
        package = PackageIdentity(
            name=opts["fdw_package_name"], version=version, url=opts["fdw_package_url"]
        )

        auth_scheme = opts.get("auth_scheme", "raw").lower()
        if auth_scheme not in AUTH_SCHEMES:
            raise ConfigurationError(
                f"auth_scheme must be one of {', '.join(AUTH_SCHEMES)}, got '{auth_scheme}'", subject
            )
        credential = Credential(self._resolve_token(opts, subject), scheme=auth_scheme)

        defaults = ClientSettings()
        settings = ClientSettings(
            timeout=_number(opts, "timeout", defaults.timeout, subject, minimum=0, exclusive=True),
            max_attempts=int(_number(opts, "max_attempts", defaults.max_attempts, subject, minimum=1, integer=True)),
            backoff_base=_number(opts, "backoff_base", defaults.backoff_base, subject, minimum=0),
            max_backoff=_number(opts, "max_backoff", defaults.max_backoff, subject, minimum=0),
            page_size=int(_number(opts, "page_size", defaults.page_size, subject, minimum=1, integer=True)),
        )

        server = ForeignServer(
            name=name,
            package=package,
            api_url=api_url,
            credential=credential,
            settings=settings,
            allow_anonymous=_boolean(opts, "allow_anonymous", False, subject),
        )

        access = "anonymous" if credential.is_anonymous else f"{auth_scheme} key"
        logger.info(f"Resolved server '{name}' -> {api_url} ({package}, {access})")
        return server

    def resolve_table(
        self,
        name: str,
        server: ForeignServer,
        options: Mapping[str, Any],
        columns: Iterable[ColumnDefinition] | None = None,
        schema: str | None = None,
    ) -> ForeignTable:
        """
        Build a ForeignTable bound to a resolved server

        Args:
            name: Table name
            server: Owning server
            options: Table options (object, strict, parent ids)
            columns: Declared columns; the object's catalog columns if None
            schema: Namespace the table lives in

        Raises:
            ConfigurationError: If options or columns are invalid
        """
        subject = f"foreign table '{schema + '.' if schema else ''}{name}'"
        _check_name(name, subject)
        if schema is not None:
            _check_name(schema, subject)
        opts = _stringify(options)

        object_name = opts.get("object")
        if not object_name:
            raise ConfigurationError("missing required option 'object'", subject)

        definition = self.catalog.object_definition(object_name)
        if definition.deferred:
            logger.info(
                f"Object '{object_name}' of {subject} is not in the catalog; "
                f"it will be discovered on the remote at scan time"
            )

        allowed = {"object", "strict"} | set(definition.required_options)
        unknown = sorted(set(opts) - allowed)
        if unknown:
            raise ConfigurationError(
                f"unknown option(s) {', '.join(unknown)} for object '{object_name}'; "
                f"valid options: {', '.join(sorted(allowed))}",
                subject,
            )
        missing = [opt for opt in definition.required_options if not opts.get(opt)]
        if missing:
            raise ConfigurationError(
                f"object '{object_name}' requires option(s) {', '.join(missing)}", subject
            )

        if server.credential.is_anonymous and not (definition.anonymous or server.allow_anonymous):
            raise ConfigurationError(
                f"server '{server.name}' has no api_key and object '{object_name}' does not "
                f"support anonymous access (set allow_anonymous 'true' on the server to override)",
                subject,
            )

        declared = tuple(columns) if columns is not None else tuple(definition.columns)
        if not declared:
            raise ConfigurationError(
                f"no columns declared and object '{object_name}' has no known columns", subject
            )
        seen = set()
        for col in declared:
            if col.name in seen:
                raise ConfigurationError(f"duplicate column '{col.name}'", subject)
            seen.add(col.name)

        table_options = {k: v for k, v in opts.items() if k not in ("object", "strict")}
        return ForeignTable(
            name=name,
            server=server,
            object_name=object_name,
            columns=declared,
            options=table_options,
            schema=schema,
            strict=_boolean(opts, "strict", False, subject),
        )

    def _resolve_token(self, opts: Mapping[str, str], subject: str) -> str:
        if "api_key" in opts:
            return opts["api_key"]
        key_id = opts.get("api_key_id")
        if key_id:
            token = self.secrets.get(key_id)
            if token is None:
                raise ConfigurationError(f"api_key_id '{key_id}' was not found in the secret store", subject)
            return token
        return ""


def parse_column(spec: Any) -> ColumnDefinition:
    """
    Parse a column declaration from a setup file

    Accepts 'name type [not null]' strings or mappings with name, type,
    nullable, remote_path and pushdown keys.

    Raises:
        ConfigurationError: If the declaration is invalid
    """
    if isinstance(spec, str):
        parts = spec.split()
        if not parts:
            raise ConfigurationError("empty column declaration")
        nullable = True
        if [p.lower() for p in parts[-2:]] == ["not", "null"]:
            nullable = False
            parts = parts[:-2]
        spec = {"name": parts[0], "type": " ".join(parts[1:]) or "text", "nullable": nullable}

    if not isinstance(spec, Mapping) or "name" not in spec:
        raise ConfigurationError(f"invalid column declaration: {spec!r}")

    overrides: dict[str, Any] = {}
    try:
        overrides["type"] = parse_type_name(str(spec.get("type", "text")))
    except ValueError as e:
        raise ConfigurationError(str(e), f"column '{spec['name']}'") from e
    if "nullable" in spec:
        overrides["nullable"] = bool(spec["nullable"])
    if spec.get("remote_path"):
        overrides["remote_path"] = str(spec["remote_path"])
    if "pushdown" in spec:
        overrides["pushdown"] = bool(spec["pushdown"])

    return build_column(str(spec["name"]), **overrides)


# ----------------------------------------------------------------------
# Setup files
# ----------------------------------------------------------------------

_OPTION_VALUES = {"type": "object", "additionalProperties": {"type": ["string", "number", "boolean"]}}

SETUP_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "servers": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "options"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string"},
                    "replace": {"type": "boolean"},
                    "options": _OPTION_VALUES,
                },
            },
        },
        "tables": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "server", "options"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string"},
                    "schema": {"type": "string"},
                    "server": {"type": "string"},
                    "columns": {
                        "type": "array",
                        "items": {"anyOf": [{"type": "string"}, {"type": "object", "required": ["name"]}]},
                    },
                    "options": _OPTION_VALUES,
                },
            },
        },
        "imports": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["server", "into"],
                "additionalProperties": False,
                "properties": {
                    "server": {"type": "string"},
                    "into": {"type": "string"},
                    "remote_schema": {"type": "string"},
                    "limit_to": {"type": "array", "items": {"type": "string"}},
                    "except": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}


def read_setup(path: str | Path, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Load, substitute and validate a YAML setup file

    Args:
        path: Setup file path
        environ: Variables for ${VAR} / ${VAR:default} substitution

    Returns:
        Validated setup document

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read setup file: {e}", str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML: {e}", str(path)) from e

    if document is None:
        document = {}
    document = substitute_variables(document, os.environ if environ is None else environ)
    validate_setup(document, str(path))

    logger.info(
        f"Loaded setup file {path}: {len(document.get('servers', []))} server(s), "
        f"{len(document.get('tables', []))} table(s), {len(document.get('imports', []))} import(s)"
    )
    return document


def validate_setup(document: Any, source: str = "setup") -> None:
    """Validate a setup document against SETUP_SCHEMA"""
    try:
        jsonschema.validate(document, SETUP_SCHEMA)
    except jsonschema.ValidationError as e:
        location = ".".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"invalid setup at '{location}': {e.message}", source) from e


def substitute_variables(obj: Any, environ: Mapping[str, str]) -> Any:
    """Recursively replace ${VAR} and ${VAR:default} in strings"""
    if isinstance(obj, dict):
        return {key: substitute_variables(value, environ) for key, value in obj.items()}
    if isinstance(obj, list):
        return [substitute_variables(item, environ) for item in obj]
    if not isinstance(obj, str):
        return obj

    def replace_var(match):
        name, default = match.group(1), match.group(2)
        value = environ.get(name)
        if value is not None:
            return value
        if default is None:
            raise ConfigurationError(f"environment variable '{name}' is not set and has no default")
        return default

    return _ENV_VAR.sub(replace_var, obj)


def _stringify(options: Mapping[str, Any]) -> dict[str, str]:
    result = {}
    for key, value in options.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        result[str(key).lower()] = "" if value is None else str(value)
    return result


def _check_name(name: str, subject: str) -> None:
    if not name or not _NAME.match(name):
        raise ConfigurationError(f"invalid identifier '{name}'", subject)


def _boolean(opts: Mapping[str, str], key: str, default: bool, subject: str) -> bool:
    if key not in opts:
        return default
    value = opts[key].strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got '{opts[key]}'", subject)


def _number(
    opts: Mapping[str, str],
    key: str,
    default: float,
    subject: str,
    minimum: float,
    exclusive: bool = False,
    integer: bool = False,
) -> float:
    if key not in opts:
        return default
    raw = opts[key].strip()
    try:
        value = int(raw) if integer else float(raw)
    except ValueError:
        kind = "an integer" if integer else "a number"
        raise ConfigurationError(f"{key} must be {kind}, got '{raw}'", subject) from None
    if value < minimum or (exclusive and value == minimum):
        bound = f"> {minimum}" if exclusive else f">= {minimum}"
        raise ConfigurationError(f"{key} must be {bound}, got {raw}", subject)
    return value
