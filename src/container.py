from config import AppConfig
from directory import MatrixMessageParserCallbacks
from discord_message_parser import DiscordMessageParser
from matrix_message_parser import MatrixMessageParser, MatrixMessageParserOpts
from open_telemetry import Telemetry
from url_shortener_client import UrlShortenerClient


class Container:
    """Wires configuration, telemetry and the two transcoders together."""

    def __init__(self, config: AppConfig | None = None, telemetry: Telemetry | None = None):
        self.config = config or AppConfig()

        self.telemetry = telemetry or Telemetry(
            service_name=self.config.otel_service_name,
            endpoint=self.config.otel_exporter_otlp_endpoint,
        )

        shortener_config = self.config.url_shortener_config()
        self.url_shortener = (
            UrlShortenerClient(shortener_config, telemetry=self.telemetry) if shortener_config else None
        )

        self.discord_message_parser = DiscordMessageParser(self.telemetry)
        self.matrix_message_parser = MatrixMessageParser(self.telemetry)

    def matrix_parser_opts(self, callbacks: MatrixMessageParserCallbacks, displayname: str) -> MatrixMessageParserOpts:
        """Per-message options for the Matrix → Discord direction."""
        return MatrixMessageParserOpts(
            callbacks=callbacks,
            displayname=displayname,
            determine_code_language=self.config.determine_code_language,
            url_shortener=self.url_shortener,
        )
