"""Error taxonomy shared by services and the HTTP layer.

Every error the core raises on purpose is a ``WaypointError``. The concrete
subclasses carry the player- or admin-facing message; the category classes
carry the disposition (HTTP status) so callers can branch on the kind
without knowing every concrete error.
"""
from flask import jsonify


class WaypointError(Exception):
    kind = 'error'
    status = 400
    message = 'request failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)

    @property
    def public_message(self) -> str:
        return str(self)


# ---- Categories ----

class InvalidInput(WaypointError):
    kind = 'invalid_input'
    status = 400
    message = 'invalid input'


class NotAuthenticated(WaypointError):
    kind = 'not_authenticated'
    status = 401
    message = 'authentication required'


class PermissionDenied(WaypointError):
    kind = 'permission_denied'
    status = 403
    message = 'permission denied'


class NotFound(WaypointError):
    kind = 'not_found'
    status = 404
    message = 'not found'


class Conflict(WaypointError):
    kind = 'conflict'
    status = 409
    message = 'conflict'


class Precondition(WaypointError):
    kind = 'precondition'
    status = 422
    message = 'precondition failed'


class ResourceExhausted(WaypointError):
    kind = 'resource_exhausted'
    status = 402
    message = 'resource exhausted'


class Expired(WaypointError):
    kind = 'expired'
    status = 410
    message = 'expired'


class IntegrityFailure(WaypointError):
    kind = 'integrity'
    status = 500
    message = 'internal error'

    @property
    def public_message(self) -> str:
        return 'internal error'


# ---- Gameplay ----

class AlreadyCheckedIn(Conflict):
    message = 'player has already checked in at this location'


class LocationNotFound(NotFound):
    message = 'location not found'


class InvalidLocation(Precondition):
    message = 'this is not a valid next location'


class UnnecessaryCheckOut(Precondition):
    message = 'player does not need to check out'


class CheckOutAtWrongLocation(Precondition):
    message = 'player is checking out at the wrong location'


class UnfinishedCheckIn(Precondition):
    message = 'player has unfinished activities at this location'


class AllLocationsVisited(Precondition):
    message = 'all locations visited'


class CannotAdvance(Precondition):
    message = 'the current group cannot be skipped yet'


class InstanceNotFound(NotFound):
    message = 'instance not found'


class TeamNotFound(NotFound):
    message = 'team not found'


class TeamNotStarted(Precondition):
    message = 'this team has not started the game yet'


class DuplicateTeamCode(Conflict):
    message = 'team code already exists'


class BlockNotFound(NotFound):
    message = 'block not found'


class InvalidStructure(InvalidInput):
    message = 'invalid game structure'


class OperationCancelled(WaypointError):
    kind = 'cancelled'
    status = 499
    message = 'operation cancelled'


# ---- Credits and payments ----

class InsufficientCredits(ResourceExhausted):
    message = 'insufficient credits to start team'


class PurchaseNotFound(NotFound):
    message = 'purchase not found'


class PurchaseAlreadyProcessed(Conflict):
    message = 'purchase has already been processed'


class PaymentMismatch(InvalidInput):
    message = 'payment details do not match the purchase'


class StripeNotConfigured(Precondition):
    message = 'stripe is not properly configured'


class InvalidSignature(InvalidInput):
    message = 'webhook signature verification failed'


def register_error_handlers(flask_app):
    @flask_app.errorhandler(WaypointError)
    def handle_waypoint_error(exc):
        if isinstance(exc, IntegrityFailure):
            flask_app.logger.error(f"[integrity] {exc!r}")
        return jsonify({'error': exc.public_message, 'kind': exc.kind}), exc.status
