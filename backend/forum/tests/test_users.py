"""
Tests for user management: admin role/status changes, self-service
profile edits and public profiles.
"""
from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from forum.accounts import (
    get_public_profile,
    list_users,
    set_role_status,
    update_profile,
    register_user,
    RegistrationLimiter,
)
from forum.categories import create_category
from forum.exceptions import NotFound, Forbidden, InvalidOperation
from forum.models import Profile, Role, UserStatus
from forum.permissions import principal_for
from forum.services import create_thread
from .helpers import make_user, User


class RoleStatusTestCase(TestCase):

    def setUp(self):
        self.admin, self.admin_principal = make_user('admin', role=Role.ADMIN)
        self.user, self.principal = make_user('member')
        self.mod_user, self.moderator = make_user('mod', role=Role.MODERATOR)

    def profile(self, user):
        return Profile.objects.get(user=user)

    def test_admin_promotes_to_moderator(self):
        profile = set_role_status(self.admin_principal, self.user.pk, role=Role.MODERATOR)
        self.assertEqual(profile.role, Role.MODERATOR)
        self.assertEqual(self.profile(self.user).role, Role.MODERATOR)
        self.assertEqual(self.profile(self.user).status, UserStatus.ACTIVE)

    def test_lookup_by_username(self):
        set_role_status(self.admin_principal, 'member', status=UserStatus.SUSPENDED)
        self.assertEqual(self.profile(self.user).status, UserStatus.SUSPENDED)

    def test_banned_user_loses_write_access(self):
        set_role_status(self.admin_principal, self.user.pk, status=UserStatus.BANNED)
        user = User.objects.select_related('forum_profile').get(pk=self.user.pk)
        category = create_category('General')
        with self.assertRaises(Forbidden):
            create_thread(principal_for(user), category.pk, 'After the ban', 'content')

    def test_requires_admin(self):
        for principal in (self.principal, self.moderator):
            with self.assertRaises(Forbidden):
                set_role_status(principal, self.user.pk, role=Role.ADMIN)
        self.assertEqual(self.profile(self.user).role, Role.USER)

    def test_inactive_admin_rejected(self):
        _, suspended_admin = make_user('old-admin', role=Role.ADMIN, status=UserStatus.SUSPENDED)
        with self.assertRaises(Forbidden):
            set_role_status(suspended_admin, self.user.pk, status=UserStatus.BANNED)

    def test_invalid_requests(self):
        with self.assertRaises(InvalidOperation):
            set_role_status(self.admin_principal, self.user.pk)
        with self.assertRaises(InvalidOperation):
            set_role_status(self.admin_principal, self.user.pk, role='superhero')
        with self.assertRaises(InvalidOperation):
            set_role_status(self.admin_principal, self.admin.pk, status=UserStatus.BANNED)
        with self.assertRaises(NotFound):
            set_role_status(self.admin_principal, 999999, role=Role.USER)

    def test_change_is_logged(self):
        with self.assertLogs('forum.accounts', level='INFO') as logs:
            set_role_status(self.admin_principal, self.user.pk, role=Role.MODERATOR)
        self.assertIn('role user -> moderator', '\n'.join(logs.output))

    def test_list_users(self):
        page = list_users(self.admin_principal)
        self.assertEqual([u.username for u in page.object_list], ['admin', 'member', 'mod'])

        page = list_users(self.admin_principal, role=Role.MODERATOR)
        self.assertEqual([u.username for u in page.object_list], ['mod'])

        page = list_users(self.admin_principal, search='mem')
        self.assertEqual([u.username for u in page.object_list], ['member'])

        with self.assertRaises(Forbidden):
            list_users(self.moderator)
        with self.assertRaises(InvalidOperation):
            list_users(self.admin_principal, status='asleep')


class ProfileTestCase(TestCase):

    def setUp(self):
        self.user, self.principal = make_user('member')

    def test_update_own_profile(self):
        profile = update_profile(
            self.principal,
            signature='  Cheers  ',
            location='Berlin',
            avatar_url='https://example.com/me.png',
        )
        self.assertEqual(profile.signature, 'Cheers')
        profile.refresh_from_db()
        self.assertEqual(
            (profile.signature, profile.location, profile.avatar_url),
            ('Cheers', 'Berlin', 'https://example.com/me.png')
        )

    def test_partial_update_and_clear(self):
        update_profile(self.principal, signature='sig', location='Berlin')
        profile = update_profile(self.principal, location='')
        self.assertEqual((profile.signature, profile.location), ('sig', ''))

    def test_validation(self):
        with self.assertRaises(InvalidOperation):
            update_profile(self.principal, signature='x' * 101)
        with self.assertRaises(InvalidOperation):
            update_profile(self.principal, avatar_url='javascript:alert(1)')

    def test_pending_user_cannot_edit(self):
        _, pending = make_user('pending', status=UserStatus.PENDING_VERIFICATION)
        with self.assertRaises(Forbidden):
            update_profile(pending, signature='hi')

    def test_public_profile(self):
        update_profile(self.principal, signature='sig')
        user = get_public_profile('member')
        self.assertEqual(user.forum_profile.signature, 'sig')
        with self.assertRaises(NotFound):
            get_public_profile('ghost')

    def test_me_is_reserved(self):
        limiter = RegistrationLimiter(cache, limit=10)
        with self.assertRaises(InvalidOperation):
            register_user('me', 'me@test.com', 'Correct-Horse-42!', limiter=limiter)


class UserAPITestCase(TestCase):

    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.admin, _ = make_user('admin', role=Role.ADMIN)
        self.user, _ = make_user('member')

    def test_user_list_admin_only(self):
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.get('/api/users/').status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.get('/api/users/', {'role': 'user'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['email'], 'member@test.com')

    def test_admin_sets_role_and_status(self):
        self.client.force_authenticate(self.admin)
        response = self.client.put(
            f'/api/users/{self.user.pk}/', {'role': 'moderator', 'status': 'suspended'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['role'], 'moderator')
        self.assertEqual(response.data['status'], 'suspended')

        response = self.client.put(f'/api/users/{self.user.pk}/', {}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_non_admin_cannot_set_role(self):
        self.client.force_authenticate(self.user)
        response = self.client.put(f'/api/users/{self.admin.pk}/', {'status': 'banned'}, format='json')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(Profile.objects.get(user=self.admin).status, UserStatus.ACTIVE)

    def test_me_get_and_patch(self):
        self.assertEqual(self.client.get('/api/users/me/').status_code, 403)

        self.client.force_authenticate(self.user)
        response = self.client.patch('/api/users/me/', {'signature': 'hello'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['signature'], 'hello')

        response = self.client.patch('/api/users/me/', {'role': 'admin'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['role'], 'user')

        response = self.client.get('/api/users/me/')
        self.assertEqual(response.data['username'], 'member')

    def test_public_profile_hides_private_fields(self):
        response = self.client.get('/api/users/member/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['username'], 'member')
        self.assertNotIn('email', response.data)
        self.assertNotIn('status', response.data)

        self.assertEqual(self.client.get('/api/users/ghost/').status_code, 404)
