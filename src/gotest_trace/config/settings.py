from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Configuration settings for gotest-trace.

    Values can be overridden by environment variables with GOTEST_TRACE__ prefix.
    e.g. GOTEST_TRACE__OTLP_ENDPOINT=https://tempo.example.com/v1/traces
    """
    model_config = SettingsConfigDict(
        env_prefix="GOTEST_TRACE__",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_version: str = Field(default="0.1.0", description="Application version")

    # Exporter
    otlp_endpoint: str = Field(
        default="http://localhost:4318/v1/traces",
        description="OTLP/HTTP endpoint spans are exported to."
    )
    otlp_headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra HTTP headers sent with every export request (e.g. auth)."
    )
    service_name: str = Field(
        default="go-test-runner",
        description="service.name resource attribute of the exported trace."
    )
    tracer_name: str = Field(default="go test", description="Instrumentation scope name.")
    root_span_name: str = Field(
        default="go tests",
        description="Name of the run-level span every package span is nested under."
    )
    flush_timeout_millis: int = Field(
        default=30000,
        description="How long the final flush may block before it is considered failed."
    )

    # Test process
    go_binary: str = Field(default="go", description="Go toolchain executable.")
    go_test_args: List[str] = Field(
        default_factory=lambda: ["-count=1", "-json"],
        description="Arguments passed to `go test` before the package path."
    )

    # Output
    echo_output: bool = Field(
        default=True,
        description="Whether test output is echoed to stdout while events are collected."
    )
    sort_children: bool = Field(
        default=False,
        description="Report sibling spans sorted by name instead of insertion order."
    )
    log_level: str = Field(default="INFO", description="Minimum level of diagnostic logs.")


def get_settings() -> Settings:
    """Retrieve application settings."""
    return Settings()
