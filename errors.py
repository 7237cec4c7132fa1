class DataAlchemistError(Exception):
    """Base class for errors raised at the I/O boundaries."""


class FileParseError(DataAlchemistError):
    """An uploaded file could not be read as a spreadsheet."""


class RuleFormatError(DataAlchemistError, ValueError):
    """A rule payload cannot be mapped onto any known rule type."""


class AIResponseError(DataAlchemistError):
    """The model answered without any parseable JSON."""


class AIUnavailableError(DataAlchemistError):
    """AI features were requested but no chat client could be built."""
