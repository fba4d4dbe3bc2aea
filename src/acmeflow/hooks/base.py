"""Abstract base class for acmeflow lifecycle hooks.

All custom hooks must inherit from :class:`Hook` and override the
event methods they are interested in.  Unimplemented methods are
no-ops by default.

Usage::

    from acmeflow.hooks import Hook

    class ReloadNginx(Hook):
        def on_certificate_issuance(self, ctx: dict) -> None:
            subprocess.run(["systemctl", "reload", "nginx"], check=True)
"""

from __future__ import annotations

import abc


class Hook(abc.ABC):
    """Base class for all acmeflow lifecycle hooks.

    Parameters
    ----------
    config:
        Optional passthrough configuration from the hook entry's
        ``config`` dict in the acmeflow config file.

    """

    def __init__(self, config: dict | None = None) -> None:
        self.config = config or {}

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Validate hook-specific configuration at load time.

        Override in subclasses to reject invalid config before the
        hook is instantiated.  Raise :class:`ValueError` if *config*
        is not acceptable.

        The default implementation is a no-op.
        """

    # -- Order events -----------------------------------------------------

    def on_order_creation(self, ctx: dict) -> None:
        """Called after the server accepted a new order.

        Context keys: ``certificate``, ``run_id``, ``order_url``,
        ``domains``, ``authorizations``.
        """

    # -- Challenge events -------------------------------------------------

    def on_challenge_completed(self, ctx: dict) -> None:
        """Called after a proof was published and the challenge accepted.

        Context keys: ``certificate``, ``run_id``, ``domain``,
        ``challenge_type``, ``challenge_url``, ``file_name``.
        """

    # -- Certificate events -----------------------------------------------

    def on_certificate_issuance(self, ctx: dict) -> None:
        """Called once the issued certificate has been stored.

        Context keys: ``certificate``, ``run_id``, ``domains``,
        ``order_url``, ``certificate_url``, ``output_path``.
        """

    def on_issuance_failure(self, ctx: dict) -> None:
        """Called when a run ends with an error.

        Context keys: ``certificate``, ``run_id``, ``domains``,
        ``error_class``, ``error``.
        """
