# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Exception hierarchy for catalog, versioning and deployment operations.

Every error is scoped to a single descriptor, deployment or request. The
``retryable`` flag tells callers whether repeating the same call can succeed
without anything else changing first.
"""

from __future__ import annotations


class XanthusError(Exception):
    """Base exception for orchestrator errors."""

    retryable = False


class CatalogValidationError(XanthusError, ValueError):
    """Raised when an application descriptor is malformed."""

    def __init__(self, message: str, *, descriptor_id: str | None = None, source: str = "") -> None:
        super().__init__(message)
        self.descriptor_id = descriptor_id
        self.source = source


class DescriptorNotFound(XanthusError, KeyError):
    """Raised when a descriptor id is not in the active catalog."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "descriptor not found"


class VersionSourceUnreachable(XanthusError):
    """Network or API failure while listing versions."""

    retryable = True


class NoVersionsFound(XanthusError):
    """The version source returned no candidates matching the descriptor."""


class PlaceholderSubstitutionError(XanthusError):
    """A placeholder expression could not be evaluated for a values template."""


class DuplicateDeployment(XanthusError):
    """A deployment already exists for the requested natural key."""


class DeploymentNotFound(XanthusError):
    """No deployment is registered for the given natural key."""


class InvalidStateTransition(XanthusError):
    """The requested operation is not valid from the deployment's status."""


class InsufficientResources(XanthusError):
    """The target VPS does not meet the descriptor's minimum requirements."""


class UnknownTarget(XanthusError):
    """The target VPS is not known to the inventory."""


class _CollaboratorError(XanthusError):
    """Failure reported by the cluster collaborator; the original error is kept."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ApplyFailed(_CollaboratorError):
    """Chart apply (install or upgrade) failed."""


class UninstallFailed(_CollaboratorError):
    """Chart uninstall failed."""


class InvalidSubdomain(XanthusError, ValueError):
    """The subdomain is not a valid DNS hostname."""
