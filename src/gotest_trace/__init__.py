"""Export `go test -json` runs as OpenTelemetry traces."""

__version__ = "0.1.0"
