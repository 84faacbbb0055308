class ApplicationError(Exception):
    pass


class ConfigurationError(ApplicationError):
    """The mutation policy or the webhook configuration is missing or invalid."""


class ProviderError(ConfigurationError):
    """The policy source could not be reached or read."""


class MalformedRequestError(ApplicationError):
    """The object under review does not have the shape we expect.

    Unlike other errors this one is answered with an AdmissionReview that
    denies the request, so it carries the uid of the request it refers to.
    """

    def __init__(self, uid: str, message: str):
        super().__init__(message)
        self.uid = uid
        self.message = message
