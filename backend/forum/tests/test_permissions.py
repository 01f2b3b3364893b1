"""
Tests for the role hierarchy and principal construction.
"""
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase

from forum.categories import create_category
from forum.exceptions import Forbidden
from forum.models import Role, UserStatus, Profile
from forum.permissions import (
    GUEST,
    Principal,
    has_permission,
    require_role,
    ensure_active,
    principal_for,
    is_owner_or_moderator,
)
from forum.services import list_threads
from .helpers import make_user, User


class RoleHierarchyTestCase(SimpleTestCase):

    def test_rank_order(self):
        self.assertLess(Role.ADMIN.rank, Role.MODERATOR.rank)
        self.assertLess(Role.MODERATOR.rank, Role.USER.rank)
        self.assertLess(Role.USER.rank, Role.GUEST.rank)

    def test_more_privileged_role_passes(self):
        self.assertTrue(has_permission(Role.USER, Role.MODERATOR))
        self.assertTrue(has_permission(Role.GUEST, Role.USER))
        self.assertTrue(has_permission(Role.USER, Role.USER))

    def test_less_privileged_role_fails(self):
        self.assertFalse(has_permission(Role.MODERATOR, Role.USER))
        self.assertFalse(has_permission(Role.USER, Role.GUEST))
        self.assertFalse(has_permission(Role.ADMIN, Role.MODERATOR))

    def test_admin_always_passes(self):
        for required in Role:
            self.assertTrue(has_permission(required, Role.ADMIN))

    def test_accepts_raw_values(self):
        self.assertTrue(has_permission('user', 'moderator'))
        self.assertFalse(has_permission('moderator', 'guest'))

    def test_require_role_names_missing_role(self):
        with self.assertRaises(Forbidden) as ctx:
            require_role(Role.MODERATOR, GUEST, 'lock threads')
        self.assertEqual(ctx.exception.required_role, Role.MODERATOR)
        self.assertIn('moderator', ctx.exception.message)

    def test_ownership(self):
        principal = Principal(1, 'owner', Role.USER, UserStatus.ACTIVE)
        moderator = Principal(2, 'mod', Role.MODERATOR, UserStatus.ACTIVE)
        self.assertTrue(is_owner_or_moderator(principal, 1))
        self.assertFalse(is_owner_or_moderator(principal, 3))
        self.assertFalse(is_owner_or_moderator(principal, None))
        self.assertTrue(is_owner_or_moderator(moderator, 3))


class PrincipalTestCase(TestCase):

    def test_anonymous_is_guest(self):
        self.assertEqual(principal_for(AnonymousUser()), GUEST)
        self.assertEqual(principal_for(None), GUEST)

    def test_profile_created_on_registration(self):
        user = User.objects.create_user('user1', 'u1@test.com', 'pass')
        profile = Profile.objects.get(user=user)
        self.assertEqual(profile.role, Role.USER)
        self.assertEqual(profile.status, UserStatus.PENDING_VERIFICATION)

    def test_superuser_is_active_admin(self):
        admin = User.objects.create_superuser('root', 'root@test.com', 'pass')
        principal = principal_for(User.objects.get(pk=admin.pk))
        self.assertEqual(principal.role, Role.ADMIN)
        self.assertEqual(principal.status, UserStatus.ACTIVE)

    def test_principal_reads_profile(self):
        user, principal = make_user('mod', role=Role.MODERATOR)
        self.assertEqual(principal.user_id, user.id)
        self.assertEqual(principal.role, Role.MODERATOR)
        self.assertTrue(principal.is_moderator)

    def test_ensure_active(self):
        _, active = make_user('active')
        _, pending = make_user('pending', status=UserStatus.PENDING_VERIFICATION)
        _, banned = make_user('banned', status=UserStatus.BANNED)

        self.assertEqual(ensure_active(active), active)
        with self.assertRaises(Forbidden):
            ensure_active(pending)
        with self.assertRaises(Forbidden):
            ensure_active(banned)
        with self.assertRaises(Forbidden) as ctx:
            ensure_active(GUEST)
        self.assertEqual(ctx.exception.required_role, Role.USER)


class CategoryViewPermissionTestCase(TestCase):
    """GUEST vs. a members-only category; ADMIN always gets in."""

    def setUp(self):
        self.category = create_category('Members', min_view_role=Role.USER)
        self.admin_user, self.admin = make_user('admin', role=Role.ADMIN)
        self.user, self.member = make_user('member')

    def test_guest_forbidden(self):
        with self.assertRaises(Forbidden) as ctx:
            list_threads(self.category.pk, GUEST)
        self.assertEqual(ctx.exception.required_role, Role.USER)

    def test_member_allowed(self):
        page = list_threads(self.category.pk, self.member)
        self.assertEqual(len(page.object_list), 0)

    def test_admin_allowed_regardless_of_threshold(self):
        staff_only = create_category('Staff', min_view_role=Role.ADMIN)
        list_threads(self.category.pk, self.admin)
        list_threads(staff_only.pk, self.admin)
        with self.assertRaises(Forbidden):
            list_threads(staff_only.pk, self.member)
