"""DSN parsing and redaction utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse

from .redaction import REDACTED_VALUE, redact_query_params


@dataclass
class DSNConfig:
    driver: str
    username: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    path: str = ""
    query: dict[str, str] = field(default_factory=dict)

    @property
    def backend(self) -> str:
        """
        Backend family without the driver suffix (``postgresql+psycopg`` -> ``postgresql``).
        """
        return self.driver.split("+", 1)[0].lower()

    def redacted(self) -> str:
        """
        Return the DSN with credentials and sensitive options masked.
        """

        netloc = ""
        if self.username:
            netloc += self.username
            if self.password:
                netloc += f":{REDACTED_VALUE}"
            netloc += "@"
        if self.host:
            netloc += self.host
        if self.port:
            netloc += f":{self.port}"

        # Built by hand so "sqlite:///file.db" keeps its triple slash.
        result = f"{self.driver}://{netloc}{self.path}"
        if self.query:
            result += f"?{urlencode(redact_query_params(self.query))}"
        return result


def parse_dsn(dsn: str) -> DSNConfig:
    parsed = urlparse(dsn)
    return DSNConfig(
        driver=parsed.scheme,
        username=parsed.username,
        password=parsed.password,
        host=parsed.hostname,
        port=parsed.port,
        database=parsed.path.lstrip("/") or None,
        path=parsed.path or "",
        query=dict(parse_qsl(parsed.query)),
    )


def dsn_from_env(env_var: str) -> DSNConfig:
    value = os.getenv(env_var)
    if not value:
        raise ValueError(f"Environment variable {env_var} is not set")
    return parse_dsn(value)
