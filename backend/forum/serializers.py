"""
DRF Serializers
===============

Serializers handle:
1. Validation of the shape of incoming data (types, lengths, choices)
2. Transformation of model instances to JSON

Business rules (roles, locks, counters) are NOT enforced here; the views
hand validated data to the core modules, which raise ForumError.

DESIGN DECISIONS:
-----------------
1. Separate input serializers (plain Serializer) and output serializers
   (ModelSerializer); counters are always read-only on output.
2. Category tree is serialized from the pre-built nested dicts of
   categories.find_tree(), recursively, with no extra queries.
3. The caller's vote on each post is passed in context (one query per page).
"""

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import (
    Role,
    UserStatus,
    Profile,
    Category,
    Thread,
    Post,
    PostComment,
    CATEGORY_NAME_MAX_LENGTH,
    THREAD_TITLE_MAX_LENGTH,
    COMMENT_MAX_LENGTH,
    PROFILE_TEXT_MAX_LENGTH,
)

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = User
        fields = ['id', 'username']
        read_only_fields = fields


# ============================================================================
# CATEGORIES
# ============================================================================

class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = [
            'id',
            'name',
            'slug',
            'description',
            'icon_url',
            'display_order',
            'parent',
            'thread_count',
            'post_count',
            'min_view_role',
            'min_thread_role',
            'min_post_role',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class CategoryTreeSerializer(serializers.Serializer):
    """
    Serializer for a node of the category tree.

    Structure:
    {
        "category": { ...category data... },
        "children": [ ...nested CategoryTreeSerializer... ]
    }
    """
    category = CategorySerializer()
    children = serializers.SerializerMethodField()

    def get_children(self, obj):
        return CategoryTreeSerializer(obj['children'], many=True).data


class CategoryCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=CATEGORY_NAME_MAX_LENGTH)
    parent_id = serializers.IntegerField(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    icon_url = serializers.CharField(required=False, allow_blank=True, max_length=255, default='')
    display_order = serializers.IntegerField(required=False, min_value=0, default=0)
    min_view_role = serializers.ChoiceField(choices=Role.choices, default=Role.GUEST)
    min_thread_role = serializers.ChoiceField(choices=Role.choices, default=Role.USER)
    min_post_role = serializers.ChoiceField(choices=Role.choices, default=Role.USER)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Name cannot be empty.")
        return value.strip()


class CategoryUpdateSerializer(serializers.Serializer):
    """
    All fields optional. An explicit "parent_id": null moves the
    category to the root; omitting parent_id leaves the parent alone.
    """
    name = serializers.CharField(max_length=CATEGORY_NAME_MAX_LENGTH, required=False)
    parent_id = serializers.IntegerField(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True)
    icon_url = serializers.CharField(required=False, allow_blank=True, max_length=255)
    display_order = serializers.IntegerField(required=False, min_value=0)
    min_view_role = serializers.ChoiceField(choices=Role.choices, required=False)
    min_thread_role = serializers.ChoiceField(choices=Role.choices, required=False)
    min_post_role = serializers.ChoiceField(choices=Role.choices, required=False)


# ============================================================================
# THREADS & POSTS
# ============================================================================

class ThreadSerializer(serializers.ModelSerializer):
    author = UserSerializer(read_only=True)
    last_post_by = UserSerializer(read_only=True)

    class Meta:
        model = Thread
        fields = [
            'id',
            'title',
            'slug',
            'category',
            'author',
            'is_locked',
            'is_pinned',
            'view_count',
            'reply_count',
            'last_post',
            'last_post_at',
            'last_post_by',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ThreadCreateSerializer(serializers.Serializer):
    category_id = serializers.IntegerField(min_value=1)
    title = serializers.CharField(max_length=THREAD_TITLE_MAX_LENGTH)
    content = serializers.CharField()

    def validate_title(self, value):
        if len(value.strip()) < 3:
            raise serializers.ValidationError("Title must be at least 3 characters.")
        return value.strip()

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Content cannot be empty.")
        return value.strip()


class ThreadUpdateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=THREAD_TITLE_MAX_LENGTH, required=False)
    is_locked = serializers.BooleanField(required=False)
    is_pinned = serializers.BooleanField(required=False)


class PostSerializer(serializers.ModelSerializer):
    """
    Post with the caller's vote.

    user_vote comes from context['user_votes'] ({post_id: +1/-1}),
    fetched once per page by the view.
    """
    author = UserSerializer(read_only=True)
    user_vote = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'content',
            'thread',
            'author',
            'parent_post',
            'is_thread_starter',
            'is_edited',
            'upvotes',
            'downvotes',
            'score',
            'comment_count',
            'created_at',
            'updated_at',
            'user_vote',
        ]
        read_only_fields = fields

    def get_user_vote(self, obj):
        return self.context.get('user_votes', {}).get(obj.pk)


class PostCreateSerializer(serializers.Serializer):
    content = serializers.CharField()
    parent_post_id = serializers.IntegerField(required=False, allow_null=True)

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Content cannot be empty.")
        return value.strip()


class PostUpdateSerializer(serializers.Serializer):
    content = serializers.CharField()


class VoteSerializer(serializers.Serializer):
    """+1 / -1 is checked by the vote ledger itself."""
    value = serializers.IntegerField()


class CommentSerializer(serializers.ModelSerializer):
    author = UserSerializer(read_only=True)

    class Meta:
        model = PostComment
        fields = ['id', 'content', 'post', 'author', 'created_at', 'updated_at']
        read_only_fields = fields


class CommentCreateSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=COMMENT_MAX_LENGTH)

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()


# ============================================================================
# AUTH
# ============================================================================

class RegisterSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)


class LoginSerializer(serializers.Serializer):
    username_or_email = serializers.CharField()
    password = serializers.CharField(write_only=True)


class VerifyTokenSerializer(serializers.Serializer):
    token = serializers.CharField()


class ResendVerificationSerializer(serializers.Serializer):
    username_or_email = serializers.CharField()


# ============================================================================
# USERS
# ============================================================================

class PublicProfileSerializer(serializers.ModelSerializer):
    """Public profile: no email, no status."""
    role = serializers.CharField(source='forum_profile.role', read_only=True)
    signature = serializers.CharField(source='forum_profile.signature', read_only=True)
    location = serializers.CharField(source='forum_profile.location', read_only=True)
    avatar_url = serializers.CharField(source='forum_profile.avatar_url', read_only=True)

    class Meta:
        model = User
        fields = ['username', 'role', 'signature', 'location', 'avatar_url', 'date_joined', 'last_login']
        read_only_fields = fields


class UserAdminSerializer(serializers.ModelSerializer):
    """Admin listing row."""
    role = serializers.CharField(source='forum_profile.role', read_only=True)
    status = serializers.CharField(source='forum_profile.status', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'role', 'status', 'date_joined', 'last_login']
        read_only_fields = fields


class ProfileSerializer(serializers.ModelSerializer):
    """The caller's own profile."""
    username = serializers.CharField(source='user.username', read_only=True)
    email = serializers.CharField(source='user.email', read_only=True)

    class Meta:
        model = Profile
        fields = ['username', 'email', 'role', 'status', 'signature', 'location', 'avatar_url']
        read_only_fields = fields


class ProfileUpdateSerializer(serializers.Serializer):
    signature = serializers.CharField(required=False, allow_blank=True, max_length=PROFILE_TEXT_MAX_LENGTH)
    location = serializers.CharField(required=False, allow_blank=True, max_length=PROFILE_TEXT_MAX_LENGTH)
    avatar_url = serializers.URLField(required=False, allow_blank=True, max_length=255)


class RoleStatusSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices, required=False)
    status = serializers.ChoiceField(choices=UserStatus.choices, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide a role or a status.')
        return attrs
