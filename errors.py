"""Error types raised by the CAPTCHA solver."""


class CaptchaError(Exception):
    """Base class for expected solver failures."""


class ModelLoadError(CaptchaError):
    """Model parameters could not be fetched, parsed or validated."""


class ModelUnavailableError(CaptchaError):
    """The model failed to load, so nothing can be classified."""


class ImageDecodeError(CaptchaError):
    """The image source could not be decoded into pixels."""


class NoCharactersFoundError(CaptchaError):
    """The cleaned mask contains no foreground pixels."""
