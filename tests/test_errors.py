from peru_prices.errors import (
    ExtractionError,
    NavigationError,
    OutputPathError,
    PriceParseError,
    ScrapeError,
    SpiderError,
    error_causes,
    format_error_chain,
)


def raise_chain():
    try:
        try:
            raise ConnectionResetError("connection reset by peer")
        except ConnectionResetError as e:
            raise OSError("Failed to read document") from e
    except OSError as e:
        raise NavigationError("Failed to go to https://www.metro.pe/lacteos") from e


def test_format_error_chain_lists_every_cause():
    try:
        raise_chain()
    except NavigationError as e:
        formatted = format_error_chain(e)
        causes = error_causes(e)

    assert formatted == (
        "Failed to go to https://www.metro.pe/lacteos\n"
        "\n"
        "Caused by:\n\tFailed to read document\n"
        "Caused by:\n\tconnection reset by peer"
    )
    assert [type(c) for c in causes] == [OSError, ConnectionResetError]


def test_format_error_without_cause():
    assert format_error_chain(SpiderError("boom")) == "boom\n"


def test_cause_without_message_uses_its_type():
    try:
        try:
            raise TimeoutError()
        except TimeoutError as e:
            raise ScrapeError("No element found") from e
    except ScrapeError as e:
        assert format_error_chain(e).endswith("Caused by:\n\tTimeoutError")


def test_hierarchy():
    assert issubclass(NavigationError, ScrapeError)
    assert issubclass(PriceParseError, ExtractionError)
    assert issubclass(ExtractionError, SpiderError)
    assert "not a directory" in str(OutputPathError("data"))
