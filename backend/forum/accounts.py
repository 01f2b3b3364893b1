"""
Accounts
========

Registration, email verification, credential checks and user management
on top of django.contrib.auth. Forum role/status and the public profile
fields live on the Profile.

REGISTRATION FLOW:
------------------
1. RegistrationLimiter.check(ip)   - N registrations per IP per day
2. Uniqueness check                - username / email -> Conflict
3. validate_password()             - Django's AUTH_PASSWORD_VALIDATORS
4. create_user()                   - password hashed by Django
                                     Profile: role USER, PENDING_VERIFICATION
5. create_verification_token()     - token in cache, mail sent

CACHE KEYS:
-----------
    register_limit:<ip>             counter, expires at next midnight
    verify_token:<token>            -> user id
    verify_token_by_id:<user_id>    -> token (reused by resend)

The limiter fails open: a cache outage lets registrations through.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.contrib.auth import authenticate, get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.cache import cache as default_cache
from django.core.exceptions import ValidationError
from django.core.mail import send_mail
from django.core.paginator import Page
from django.core.validators import URLValidator
from django.db import transaction, IntegrityError
from django.db.models import Q
from django.utils import timezone

from .exceptions import NotFound, Conflict, Forbidden, InvalidOperation, RateLimited
from .models import Profile, Role, UserStatus, PROFILE_TEXT_MAX_LENGTH
from .permissions import Principal, principal_for, ensure_active, require_role
from .queries import paginate

logger = logging.getLogger(__name__)

User = get_user_model()

VERIFY_TOKEN_PREFIX = 'verify_token:'
VERIFY_TOKEN_BY_ID_PREFIX = 'verify_token_by_id:'

# Clash with /api/users/me/
RESERVED_USERNAMES = {'me'}


def seconds_until_midnight(now=None) -> int:
    now = timezone.localtime(now)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(int((midnight - now).total_seconds()), 1)


class RegistrationLimiter:
    """Per-IP daily registration counter."""
    key_prefix = 'register_limit:'

    def __init__(self, cache, limit: int):
        self.cache = cache
        self.limit = limit

    def check(self, ip: Optional[str]) -> None:
        """
        Count one registration attempt for this IP.

        RAISES: RateLimited once the daily limit is exceeded.
        """
        if not ip:
            logger.warning('No IP address for registration attempt, skipping rate limit')
            return

        key = f"{self.key_prefix}{ip}"
        try:
            self.cache.add(key, 0, timeout=seconds_until_midnight())
            attempts = self.cache.incr(key)
        except Exception:
            logger.exception(f"Cache error in registration rate limit for IP {ip}, allowing request")
            return

        if attempts > self.limit:
            logger.warning(f"Registration rate limit exceeded for IP {ip} ({attempts}/{self.limit})")
            raise RateLimited('Registration limit reached for today. Please try again tomorrow.')


def default_registration_limiter() -> RegistrationLimiter:
    return RegistrationLimiter(
        default_cache,
        getattr(settings, 'FORUM_REGISTRATION_LIMIT_PER_IP_PER_DAY', 2),
    )


def _find_user(username_or_email: str):
    value = (username_or_email or '').strip()
    if not value:
        return None
    return User.objects.filter(Q(username=value) | Q(email__iexact=value)).first()


def _token_ttl() -> int:
    return getattr(settings, 'FORUM_VERIFICATION_TOKEN_TTL_SECONDS', 86400)


def send_verification_email(user, token: str) -> None:
    """Fire-and-forget: failures are logged, never raised."""
    message = (
        f"Hello {user.username},\n\n"
        f"Use this code to verify your account: {token}\n"
    )
    try:
        send_mail(
            'Verify your account',
            message,
            getattr(settings, 'DEFAULT_FROM_EMAIL', None),
            [user.email],
            fail_silently=False,
        )
        logger.info(f"Verification email sent to {user.email}")
    except Exception:
        logger.exception(f"Failed to send verification email to {user.email}")


def create_verification_token(user, cache=None) -> str:
    """
    Issue a uuid4 token for the user and mail it.

    Cache errors propagate to the caller.
    """
    cache = cache or default_cache
    token = str(uuid.uuid4())
    ttl = _token_ttl()

    cache.set(f"{VERIFY_TOKEN_PREFIX}{token}", user.pk, timeout=ttl)
    cache.set(f"{VERIFY_TOKEN_BY_ID_PREFIX}{user.pk}", token, timeout=ttl)
    logger.info(f"Verification token created for user {user.pk} (expires in {ttl}s)")

    send_verification_email(user, token)
    return token


def register_user(
    username: str,
    email: str,
    password: str,
    ip: Optional[str] = None,
    limiter: Optional[RegistrationLimiter] = None,
    cache=None,
):
    """
    Register a new account in PENDING_VERIFICATION status.

    RAISES:
    - RateLimited: too many registrations from this IP today
    - Conflict: username or email already in use
    - InvalidOperation: missing fields or password rejected by validators
    """
    (limiter or default_registration_limiter()).check(ip)

    username = (username or '').strip()
    email = (email or '').strip()
    if not username or not email or not password:
        raise InvalidOperation('Username, email and password are required.')
    if username.lower() in RESERVED_USERNAMES:
        raise InvalidOperation(f"The username '{username}' is reserved.")

    if User.objects.filter(Q(username=username) | Q(email__iexact=email)).exists():
        logger.warning(f"Registration conflict for username {username} / email {email}")
        raise Conflict('This email address or username is already in use.')

    try:
        validate_password(password, user=User(username=username, email=email))
    except ValidationError as e:
        raise InvalidOperation(' '.join(e.messages))

    try:
        with transaction.atomic():
            user = User.objects.create_user(username=username, email=email, password=password)
            Profile.objects.update_or_create(
                user=user,
                defaults={'role': Role.USER, 'status': UserStatus.PENDING_VERIFICATION},
            )
    except IntegrityError:
        # Concurrent registration with the same username
        raise Conflict('This email address or username is already in use.')

    logger.info(f"User registered: {user.username} (ID: {user.pk})")

    try:
        create_verification_token(user, cache=cache)
    except Exception:
        logger.exception(f"Could not create verification token for user {user.pk}")

    return user


def verify_token(token: str, cache=None):
    """
    Activate the account behind a verification token.

    RETURNS: the user, or None for an unknown/expired token or an account
    that is neither pending nor active.
    """
    cache = cache or default_cache
    key = f"{VERIFY_TOKEN_PREFIX}{token}"

    user_id = cache.get(key)
    if user_id is None:
        logger.warning(f"Verification token not found or expired: {token}")
        return None

    user = User.objects.filter(pk=user_id).select_related('forum_profile').first()
    if user is None:
        logger.error(f"User {user_id} for verification token not found")
        cache.delete(key)
        return None

    profile, _ = Profile.objects.get_or_create(user=user)
    if profile.status == UserStatus.ACTIVE:
        logger.warning(f"User {user.pk} is already active")
        cache.delete(key)
        return user

    if profile.status != UserStatus.PENDING_VERIFICATION:
        logger.error(f"User {user.pk} has unexpected status {profile.status} for verification")
        cache.delete(key)
        return None

    Profile.objects.filter(pk=profile.pk).update(status=UserStatus.ACTIVE)
    cache.delete_many([key, f"{VERIFY_TOKEN_BY_ID_PREFIX}{user.pk}"])
    logger.info(f"User {user.pk} verified and activated")
    return user


def resend_verification(username_or_email: str, cache=None) -> str:
    """
    Re-send the verification mail, reusing a live token when there is one.

    RAISES:
    - NotFound: no such user
    - InvalidOperation: account is not pending verification
    """
    cache = cache or default_cache
    user = _find_user(username_or_email)
    if user is None:
        raise NotFound('User not found.')

    profile, _ = Profile.objects.get_or_create(user=user)
    if profile.status != UserStatus.PENDING_VERIFICATION:
        logger.warning(f"Resend requested for user {user.pk} with status {profile.status}")
        raise InvalidOperation('Account is not awaiting verification.')

    existing = cache.get(f"{VERIFY_TOKEN_BY_ID_PREFIX}{user.pk}")
    if existing:
        logger.info(f"Reusing verification token for user {user.pk}")
        send_verification_email(user, existing)
        return existing

    return create_verification_token(user, cache=cache)


STATUS_MESSAGES = {
    UserStatus.PENDING_VERIFICATION: 'Account not verified. Please check your email.',
    UserStatus.SUSPENDED: 'Your account is suspended or banned.',
    UserStatus.BANNED: 'Your account is suspended or banned.',
}


def authenticate_user(username_or_email: str, password: str, request=None) -> Optional[Principal]:
    """
    Check credentials and account status.

    RETURNS: Principal, or None for bad credentials.
    RAISES: Forbidden when the account is not ACTIVE.
    """
    user = _find_user(username_or_email)
    if user is None:
        logger.warning(f"Login failed: user {username_or_email} not found")
        return None

    user = authenticate(request, username=user.username, password=password)
    if user is None:
        logger.warning(f"Login failed: invalid password for {username_or_email}")
        return None

    principal = principal_for(user)
    if principal.status != UserStatus.ACTIVE:
        logger.warning(f"Login refused for {user.username}: status is {principal.status}")
        raise Forbidden(STATUS_MESSAGES.get(principal.status, 'Account is not active.'))

    logger.info(f"User {user.username} authenticated")
    return principal


# ============================================================================
# USER MANAGEMENT
# ============================================================================

def _find_user_by_username_or_id(identifier):
    """Username first, then a digit string as the user id."""
    value = str(identifier or '').strip()
    qs = User.objects.select_related('forum_profile')
    user = qs.filter(username=value).first()
    if user is None and value.isdigit():
        user = qs.filter(pk=int(value)).first()
    if user is None:
        logger.warning(f"User not found: {identifier}")
        raise NotFound(f"User {identifier} not found.")
    return user


def get_public_profile(username: str):
    """
    The user behind a public profile page, with its Profile loaded.

    Which fields are public is decided by PublicProfileSerializer
    (no email, no status).
    """
    user = User.objects.select_related('forum_profile').filter(username=username).first()
    if user is None:
        raise NotFound(f"User {username} not found.")
    Profile.objects.get_or_create(user=user)
    return user


def list_users(
    principal: Principal,
    page=None,
    limit=None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> Page:
    """Admin listing of accounts, filterable by role, status and username/email."""
    principal = ensure_active(principal)
    require_role(Role.ADMIN, principal, 'list users')

    qs = User.objects.select_related('forum_profile').order_by('username')
    try:
        if role:
            qs = qs.filter(forum_profile__role=Role(role))
        if status:
            qs = qs.filter(forum_profile__status=UserStatus(status))
    except ValueError:
        raise InvalidOperation('Unknown role or status filter.')
    if search:
        qs = qs.filter(Q(username__icontains=search) | Q(email__icontains=search))
    return paginate(qs, page, limit)


def set_role_status(
    principal: Principal,
    user_id_or_username,
    *,
    role: Optional[str] = None,
    status: Optional[str] = None,
) -> Profile:
    """
    Change another user's role and/or status (admin only).

    Takes effect on the user's next request: principals are rebuilt from
    the Profile every time.

    RAISES:
    - Forbidden: caller is not an active admin
    - InvalidOperation: neither role nor status given, unknown value, or
      the admin targets their own account
    - NotFound: no such user
    """
    principal = ensure_active(principal)
    require_role(Role.ADMIN, principal, 'change user roles or status')

    if role is None and status is None:
        raise InvalidOperation('Provide a role or a status.')
    try:
        role = Role(role) if role is not None else None
        status = UserStatus(status) if status is not None else None
    except ValueError:
        raise InvalidOperation('Unknown role or status.')

    user = _find_user_by_username_or_id(user_id_or_username)
    if user.pk == principal.user_id:
        raise InvalidOperation('You cannot change your own role or status.')

    with transaction.atomic():
        profile, _ = Profile.objects.select_for_update().get_or_create(user=user)
        previous = (profile.role, profile.status)
        fields = []
        if role is not None:
            profile.role = role
            fields.append('role')
        if status is not None:
            profile.status = status
            fields.append('status')
        profile.save(update_fields=fields)

    logger.info(
        f"User {user.username} (ID: {user.pk}) changed by {principal.username}: "
        f"role {previous[0]} -> {profile.role}, status {previous[1]} -> {profile.status}"
    )
    return profile


def update_profile(
    principal: Principal,
    *,
    signature: Optional[str] = None,
    location: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Profile:
    """
    Self-service profile edit. Only the public profile fields are
    editable; role and status go through set_role_status().

    An empty string clears a field, None leaves it untouched.
    """
    principal = ensure_active(principal)
    changes = {'signature': signature, 'location': location, 'avatar_url': avatar_url}
    changes = {name: value.strip() for name, value in changes.items() if value is not None}

    for name in ('signature', 'location'):
        if len(changes.get(name, '')) > PROFILE_TEXT_MAX_LENGTH:
            raise InvalidOperation(f"{name.capitalize()} cannot exceed {PROFILE_TEXT_MAX_LENGTH} characters.")
    if changes.get('avatar_url'):
        try:
            URLValidator(schemes=['http', 'https'])(changes['avatar_url'])
        except ValidationError:
            raise InvalidOperation('Avatar URL must be a valid http(s) URL.')

    with transaction.atomic():
        profile, _ = Profile.objects.select_for_update().get_or_create(user_id=principal.user_id)
        for name, value in changes.items():
            setattr(profile, name, value)
        if changes:
            profile.save(update_fields=list(changes))

    logger.info(f"Profile of {principal.username} updated: {', '.join(changes) or 'no changes'}")
    return profile
