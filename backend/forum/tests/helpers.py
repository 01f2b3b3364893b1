"""
Shared test helpers.
"""
from django.contrib.auth import get_user_model

from forum.models import Profile, Role, UserStatus
from forum.permissions import principal_for

User = get_user_model()


def make_user(username, role=Role.USER, status=UserStatus.ACTIVE, password='pass'):
    """Create a user with the given forum role/status. Returns (user, principal)."""
    user = User.objects.create_user(username, f'{username}@test.com', password)
    Profile.objects.filter(user=user).update(role=role, status=status)
    user = User.objects.select_related('forum_profile').get(pk=user.pk)
    return user, principal_for(user)
