"""Exceptions raised by the crawler."""


class CrawlerError(Exception):
    """Base class for crawler failures."""


class ConfigurationError(CrawlerError):
    """Invalid or missing configuration, raised before any network activity."""


class FetchError(CrawlerError):
    """A request failed after all retries were exhausted."""

    def __init__(self, url: str, cause: BaseException):
        super().__init__(f"Request failed: {url} ({cause})")
        self.url = url
        self.cause = cause
        self.__cause__ = cause


class ParseError(CrawlerError):
    """Markup could not be parsed into a record."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Unable to parse {field}: {message}")
        self.field = field
        self.message = message
