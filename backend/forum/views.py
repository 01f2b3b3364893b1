"""
DRF Views
=========

Thin HTTP adapter over the forum core.

Each view:
1. Validates the request shape with a serializer
2. Builds the caller's Principal from request.user
3. Calls ONE core function (categories / services / votes / accounts)
4. Serializes the result

ForumError raised by the core is turned into {'error': ...} by
forum.exceptions.custom_exception_handler.

AUTHENTICATION NOTE:
--------------------
Session authentication (login view below) and basic auth. Role and
status come from the forum Profile, never from the request body.
"""

from django.contrib.auth import login, logout, get_user_model
from rest_framework import status, permissions
from rest_framework.views import APIView
from rest_framework.response import Response

from . import categories, services, accounts
from .exceptions import NotFound
from .models import Role, UserStatus, Profile
from .permissions import principal_for, check_category_view
from .queries import get_user_votes
from .serializers import (
    CategorySerializer,
    CategoryTreeSerializer,
    CategoryCreateSerializer,
    CategoryUpdateSerializer,
    ThreadSerializer,
    ThreadCreateSerializer,
    ThreadUpdateSerializer,
    PostSerializer,
    PostCreateSerializer,
    PostUpdateSerializer,
    VoteSerializer,
    CommentSerializer,
    CommentCreateSerializer,
    RegisterSerializer,
    LoginSerializer,
    VerifyTokenSerializer,
    ResendVerificationSerializer,
    PublicProfileSerializer,
    UserAdminSerializer,
    ProfileSerializer,
    ProfileUpdateSerializer,
    RoleStatusSerializer,
)
from .votes import cast_vote

User = get_user_model()


def get_client_ip(request):
    return request.META.get('REMOTE_ADDR') or None


def page_response(page, serializer_class, context=None):
    """Standard paginated envelope."""
    return Response({
        'count': page.paginator.count,
        'page': page.number,
        'num_pages': page.paginator.num_pages,
        'results': serializer_class(page.object_list, many=True, context=context or {}).data,
    })


def post_context(request, posts):
    """Serializer context carrying the caller's vote on each post."""
    user_id = request.user.id if request.user.is_authenticated else None
    return {'request': request, 'user_votes': get_user_votes(user_id, [p.pk for p in posts])}


class IsForumAdmin(permissions.BasePermission):
    """Active forum admins only (Profile.role == admin)."""
    message = 'Admin role required.'

    def has_permission(self, request, view):
        principal = principal_for(request.user)
        return principal.role == Role.ADMIN and principal.status == UserStatus.ACTIVE


class AdminWriteMixin:
    """Reads are public; writes need IsForumAdmin."""

    def get_permissions(self):
        if self.request.method in permissions.SAFE_METHODS:
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated(), IsForumAdmin()]


# ============================================================================
# CATEGORIES
# ============================================================================

class CategoryListView(AdminWriteMixin, APIView):
    """
    GET  /api/categories/   - full tree, ordered by display_order
    POST /api/categories/   - create (admin)

    Query: 1 for the tree (assembled in Python)
    """

    def get(self, request):
        tree = categories.find_tree()
        return Response(CategoryTreeSerializer(tree, many=True).data)

    def post(self, request):
        serializer = CategoryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        category = categories.create_category(data.pop('name'), data.pop('parent_id', None), **data)
        return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)


class CategoryDetailView(AdminWriteMixin, APIView):
    """
    GET    /api/categories/<id_or_slug>/   - node, ancestors and subtree
    PATCH  /api/categories/<id_or_slug>/   - update / move (admin)
    DELETE /api/categories/<id_or_slug>/   - remove (admin)
    """

    def get(self, request, id_or_slug):
        category = categories.find_category(id_or_slug)
        check_category_view(category, principal_for(request.user))
        return Response({
            'category': CategorySerializer(category).data,
            'ancestors': CategorySerializer(categories.find_ancestors(category), many=True).data,
            'subtree': CategoryTreeSerializer(categories.find_descendants_tree(category)).data,
        })

    def patch(self, request, id_or_slug):
        serializer = CategoryUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        category = categories.find_category(id_or_slug)
        category = categories.update_category(category.pk, **serializer.validated_data)
        return Response(CategorySerializer(category).data)

    def delete(self, request, id_or_slug):
        category = categories.find_category(id_or_slug)
        categories.remove_category(category.pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CategoryThreadsView(APIView):
    """
    GET /api/categories/<id_or_slug>/threads/?page=&limit=

    Pinned threads first, then most recent activity.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, id_or_slug):
        page = services.list_threads(
            id_or_slug,
            principal_for(request.user),
            page=request.query_params.get('page'),
            limit=request.query_params.get('limit'),
        )
        return page_response(page, ThreadSerializer)


# ============================================================================
# THREADS
# ============================================================================

class ThreadCreateView(APIView):
    """
    POST /api/threads/

    Body:
    {
        "category_id": 1,
        "title": "Thread title",
        "content": "Starter post"
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ThreadCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        thread = services.create_thread(
            principal_for(request.user),
            serializer.validated_data['category_id'],
            serializer.validated_data['title'],
            serializer.validated_data['content'],
            ip=get_client_ip(request),
        )
        return Response(ThreadSerializer(thread).data, status=status.HTTP_201_CREATED)


class ThreadDetailView(APIView):
    """
    GET    /api/threads/<id_or_slug>/   - counts a view per IP per day
    PATCH  /api/threads/<id_or_slug>/   - title (owner/mod), is_locked/is_pinned (mod)
    DELETE /api/threads/<id_or_slug>/   - owner or moderator
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, id_or_slug):
        thread = services.get_thread(id_or_slug, principal_for(request.user), ip=get_client_ip(request))
        return Response(ThreadSerializer(thread).data)

    def patch(self, request, id_or_slug):
        serializer = ThreadUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        thread = services.update_thread(principal_for(request.user), id_or_slug, **serializer.validated_data)
        return Response(ThreadSerializer(thread).data)

    def delete(self, request, id_or_slug):
        services.remove_thread(principal_for(request.user), id_or_slug)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ThreadPostsView(APIView):
    """
    GET  /api/threads/<id_or_slug>/posts/?page=&limit=
    POST /api/threads/<id_or_slug>/posts/   - reply

    Body:
    {
        "content": "Reply text",
        "parent_post_id": 123  // optional, must be in the same thread
    }
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, id_or_slug):
        page = services.list_posts(
            id_or_slug,
            principal_for(request.user),
            page=request.query_params.get('page'),
            limit=request.query_params.get('limit'),
        )
        return page_response(page, PostSerializer, post_context(request, page.object_list))

    def post(self, request, id_or_slug):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        post = services.create_reply(
            principal_for(request.user),
            id_or_slug,
            serializer.validated_data['content'],
            parent_post_id=serializer.validated_data.get('parent_post_id'),
            ip=get_client_ip(request),
        )
        return Response(PostSerializer(post).data, status=status.HTTP_201_CREATED)


# ============================================================================
# POSTS
# ============================================================================

class PostDetailView(APIView):
    """
    GET    /api/posts/<post_id>/
    PATCH  /api/posts/<post_id>/   - owner or moderator
    DELETE /api/posts/<post_id>/   - owner or moderator; never the starter post
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        post = services.find_post(post_id, principal_for(request.user))
        return Response(PostSerializer(post, context=post_context(request, [post])).data)

    def patch(self, request, post_id):
        serializer = PostUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        post = services.update_post(principal_for(request.user), post_id, serializer.validated_data['content'])
        return Response(PostSerializer(post, context=post_context(request, [post])).data)

    def delete(self, request, post_id):
        services.remove_post(principal_for(request.user), post_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PostVoteView(APIView):
    """
    POST /api/posts/<post_id>/vote/

    Body: { "value": 1 | -1 }

    Returns:
    {
        "score": 3,
        "user_vote": 1 | -1 | null
    }

    Sending the same value twice removes the vote.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        serializer = VoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = cast_vote(principal_for(request.user), post_id, serializer.validated_data['value'])
        return Response({
            'score': result.score,
            'user_vote': result.user_vote,
        })


class PostCommentsView(APIView):
    """
    GET  /api/posts/<post_id>/comments/?page=&limit=
    POST /api/posts/<post_id>/comments/
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        page = services.list_comments(
            post_id,
            principal_for(request.user),
            page=request.query_params.get('page'),
            limit=request.query_params.get('limit'),
        )
        return page_response(page, CommentSerializer)

    def post(self, request, post_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = services.add_comment(principal_for(request.user), post_id, serializer.validated_data['content'])
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """DELETE /api/comments/<comment_id>/ - owner or moderator"""
    permission_classes = [permissions.IsAuthenticated]

    def delete(self, request, comment_id):
        services.remove_comment(principal_for(request.user), comment_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ============================================================================
# AUTH
# ============================================================================

class RegisterView(APIView):
    """
    POST /api/auth/register/

    Rate limited per IP per day. The account stays pending until the
    emailed token is verified.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = accounts.register_user(
            serializer.validated_data['username'],
            serializer.validated_data['email'],
            serializer.validated_data['password'],
            ip=get_client_ip(request),
        )
        return Response({
            'user_id': user.id,
            'username': user.username,
            'email': user.email,
            'status': UserStatus.PENDING_VERIFICATION,
        }, status=status.HTTP_201_CREATED)


class VerifyEmailView(APIView):
    """POST /api/auth/verify/  Body: { "token": "..." }"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = VerifyTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = accounts.verify_token(serializer.validated_data['token'])
        if user is None:
            return Response(
                {'error': 'Invalid or expired verification token.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return Response({'verified': True, 'user_id': user.id, 'username': user.username})


class ResendVerificationView(APIView):
    """POST /api/auth/resend-verification/  Body: { "username_or_email": "..." }"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = ResendVerificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        accounts.resend_verification(serializer.validated_data['username_or_email'])
        return Response({'sent': True})


class LoginView(APIView):
    """
    POST /api/auth/login/

    Session login. Pending, suspended and banned accounts get 403.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        principal = accounts.authenticate_user(
            serializer.validated_data['username_or_email'],
            serializer.validated_data['password'],
            request=request,
        )
        if principal is None:
            return Response(
                {'error': 'Invalid credentials.'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        user = User.objects.filter(pk=principal.user_id).first()
        if user is None:
            raise NotFound('User not found.')
        login(request, user, backend='django.contrib.auth.backends.ModelBackend')

        return Response({
            'user_id': principal.user_id,
            'username': principal.username,
            'role': principal.role,
        })


class LogoutView(APIView):
    """POST /api/auth/logout/"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        logout(request)
        return Response(status=status.HTTP_204_NO_CONTENT)


class WhoAmIView(APIView):
    """
    GET /api/auth/whoami/

    Returns the caller's principal (guest when anonymous).
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        principal = principal_for(request.user)
        return Response({
            'authenticated': principal.is_authenticated,
            'user_id': principal.user_id,
            'username': principal.username if principal.is_authenticated else None,
            'role': principal.role,
            'status': principal.status,
        })


# ============================================================================
# USERS
# ============================================================================

class UserListView(APIView):
    """
    GET /api/users/?page=&limit=&role=&status=&search=

    Admin only (enforced by accounts.list_users).
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        page = accounts.list_users(
            principal_for(request.user),
            page=request.query_params.get('page'),
            limit=request.query_params.get('limit'),
            role=request.query_params.get('role'),
            status=request.query_params.get('status'),
            search=request.query_params.get('search'),
        )
        return page_response(page, UserAdminSerializer)


class MyProfileView(APIView):
    """
    GET   /api/users/me/   - the caller's own profile
    PATCH /api/users/me/   - edit signature / location / avatar_url
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        profile = Profile.objects.select_related('user').filter(user=request.user).first()
        if profile is None:
            raise NotFound('Profile not found.')
        return Response(ProfileSerializer(profile).data)

    def patch(self, request):
        serializer = ProfileUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = accounts.update_profile(principal_for(request.user), **serializer.validated_data)
        return Response(ProfileSerializer(profile).data)


class UserDetailView(APIView):
    """
    GET /api/users/<username>/       - public profile
    PUT /api/users/<id_or_username>/ - change role and/or status (admin)
    """

    def get_permissions(self):
        if self.request.method in permissions.SAFE_METHODS:
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]

    def get(self, request, identifier):
        user = accounts.get_public_profile(identifier)
        return Response(PublicProfileSerializer(user).data)

    def put(self, request, identifier):
        serializer = RoleStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = accounts.set_role_status(
            principal_for(request.user),
            identifier,
            **serializer.validated_data,
        )
        return Response({
            'user_id': profile.user_id,
            'role': profile.role,
            'status': profile.status,
        })
