"""Exceptions raised by the installation operator."""


class QuotaNotFoundError(LookupError):
    """The requested quota tier is not present in the quota config."""

    def __init__(self, param: str):
        super().__init__(
            f"wasn't able to find a quota in the quota config which matches the '{param}' quota parameter"
        )
        self.param = param


class WindowFormatError(ValueError):
    """A backup or maintenance time could not be parsed."""


class UnknownInstallationTypeError(ValueError):
    """The installation type has no stage definition."""

    def __init__(self, installation_type: str):
        super().__init__(f"unknown installation type: {installation_type}")
        self.installation_type = installation_type
