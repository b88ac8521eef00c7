import logging
from typing import Optional
from uuid import UUID

from .errors import NotFoundError, UnauthorizedActionError, ValidationError
from .models import CreateUserRequest, Role, SetUserStatusRequest, User, UserStatus
from .storage import InMemoryStorage, StoragePort


logger = logging.getLogger(__name__)


def require_admin(actor: User) -> None:
    if actor.role != Role.ADMIN:
        raise UnauthorizedActionError(f"User {actor.id} is not an admin")


def require_player(actor: User) -> None:
    if actor.role != Role.PLAYER:
        raise UnauthorizedActionError("Only players can place wagers")


def require_active(user: User) -> None:
    if not user.is_active:
        raise UnauthorizedActionError(f"User {user.id} is blocked")


def require_manager_of(actor: User, user: User) -> None:
    """Admins manage everyone; subadmins manage only the players assigned to them."""
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.SUBADMIN and user.subadmin_id == actor.id and user.id != actor.id:
        return
    raise UnauthorizedActionError(f"User {actor.id} cannot manage user {user.id}")


class AccountService:
    def __init__(self, storage: Optional[StoragePort] = None):
        self.storage = storage or InMemoryStorage()

    def get_user(self, user_id: UUID) -> User:
        user = self.storage.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def bootstrap_admin(self, name: str) -> User:
        for user in self.storage.list_users():
            if user.role == Role.ADMIN:
                return user
        admin = self.storage.save_user(User(name=name, role=Role.ADMIN))
        logger.info("Bootstrapped admin user %s (%s)", admin.name, admin.id)
        return admin

    def create_user(self, request: CreateUserRequest, actor: User) -> User:
        require_active(actor)
        subadmin_id = request.subadmin_id

        if actor.role == Role.SUBADMIN:
            if request.role != Role.PLAYER:
                raise UnauthorizedActionError("Subadmins can only create players")
            subadmin_id = actor.id
        elif actor.role != Role.ADMIN:
            raise UnauthorizedActionError("Only admins and subadmins can create users")

        if subadmin_id is not None:
            if request.role != Role.PLAYER:
                raise ValidationError("Only players can be assigned to a subadmin")
            owner = self.get_user(subadmin_id)
            if owner.role != Role.SUBADMIN:
                raise ValidationError(f"User {subadmin_id} is not a subadmin")

        user = self.storage.save_user(User(name=request.name, role=request.role, subadmin_id=subadmin_id))
        logger.info("User %s created with role %s by %s", user.id, user.role.value, actor.id)
        return user

    def set_status(self, user_id: UUID, request: SetUserStatusRequest, actor: User) -> User:
        require_active(actor)
        with self.storage.lock(("user", user_id)):
            user = self.get_user(user_id)
            require_manager_of(actor, user)

            if request.status == UserStatus.ACTIVE and user.status == UserStatus.BLOCKED:
                blocker = self.storage.get_user(user.blocked_by) if user.blocked_by else None
                if blocker and blocker.role == Role.ADMIN and actor.role != Role.ADMIN:
                    raise UnauthorizedActionError("Only an admin can unblock a user blocked by an admin")

            user.status = request.status
            user.blocked_by = actor.id if request.status == UserStatus.BLOCKED else None
            user = self.storage.save_user(user)

        logger.info("User %s set to %s by %s", user.id, user.status.value, actor.id)
        return user

    def list_users(self, actor: User) -> list[User]:
        if actor.role == Role.ADMIN:
            return self.storage.list_users()
        if actor.role == Role.SUBADMIN:
            return self.storage.list_users(subadmin_id=actor.id)
        return [self.get_user(actor.id)]
