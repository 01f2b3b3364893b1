"""
Django Admin Configuration for Forum Models

Counters are read-only here: they are owned by the counter protocol.
Use `manage.py rebuild_forum_stats` after editing rows by hand.

Deletes are routed through the forum core (services / categories), so
counters, last_post and closure rows follow exactly as they do for API
deletes. Starter posts and votes cannot be deleted from the admin.
"""
from django.contrib import admin

from . import categories, services
from .models import Profile, Category, CategoryClosure, Thread, Post, PostVote, PostComment, Role, UserStatus
from .permissions import principal_for, has_permission


class CoreDeleteMixin:
    """
    delete_model/delete_queryset call the forum core on behalf of the
    admin user. Only active forum staff of at least `delete_role` may delete.
    """
    delete_role = Role.MODERATOR

    def has_delete_permission(self, request, obj=None):
        if not super().has_delete_permission(request, obj):
            return False
        principal = principal_for(request.user)
        return principal.status == UserStatus.ACTIVE and has_permission(self.delete_role, principal.role)

    def delete_core(self, request, obj):
        raise NotImplementedError

    def delete_model(self, request, obj):
        self.delete_core(request, obj)

    def delete_queryset(self, request, queryset):
        for obj in queryset:
            self.delete_core(request, obj)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'role', 'status', 'created_at']
    list_filter = ['role', 'status']
    search_fields = ['user__username', 'user__email']

    def has_delete_permission(self, request, obj=None):
        # The profile goes with its user
        return False


@admin.register(Category)
class CategoryAdmin(CoreDeleteMixin, admin.ModelAdmin):
    list_display = ['name', 'slug', 'parent', 'display_order', 'thread_count', 'post_count', 'min_view_role']
    list_filter = ['min_view_role', 'min_thread_role', 'min_post_role']
    search_fields = ['name', 'slug']
    # parent is edited through categories.move_category (closure rows)
    readonly_fields = ['slug', 'parent', 'thread_count', 'post_count', 'created_at', 'updated_at']
    delete_role = Role.ADMIN

    def has_add_permission(self, request):
        # Closure rows are maintained by categories.create_category
        return False

    def delete_core(self, request, obj):
        categories.remove_category(obj.pk)


@admin.register(CategoryClosure)
class CategoryClosureAdmin(admin.ModelAdmin):
    list_display = ['ancestor', 'descendant', 'depth']
    list_filter = ['depth']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Thread)
class ThreadAdmin(CoreDeleteMixin, admin.ModelAdmin):
    list_display = ['title', 'category', 'author', 'is_locked', 'is_pinned', 'reply_count', 'view_count', 'last_post_at']
    list_filter = ['is_locked', 'is_pinned', 'category']
    search_fields = ['title', 'author__username']
    readonly_fields = ['slug', 'view_count', 'reply_count', 'last_post', 'last_post_at', 'last_post_by',
                       'created_at', 'updated_at']

    def delete_core(self, request, obj):
        services.remove_thread(principal_for(request.user), obj.pk)


@admin.register(Post)
class PostAdmin(CoreDeleteMixin, admin.ModelAdmin):
    list_display = ['id', 'thread', 'author', 'is_thread_starter', 'score', 'comment_count', 'created_at']
    list_filter = ['is_thread_starter', 'is_edited', 'created_at']
    search_fields = ['content', 'author__username']
    readonly_fields = ['is_thread_starter', 'upvotes', 'downvotes', 'score', 'comment_count',
                       'created_at', 'updated_at']

    def has_delete_permission(self, request, obj=None):
        # Starter posts only go away with their thread
        if obj is not None and obj.is_thread_starter:
            return False
        return super().has_delete_permission(request, obj)

    def delete_queryset(self, request, queryset):
        super().delete_queryset(request, queryset.filter(is_thread_starter=False))

    def delete_core(self, request, obj):
        services.remove_post(principal_for(request.user), obj.pk)


@admin.register(PostVote)
class PostVoteAdmin(admin.ModelAdmin):
    list_display = ['user', 'post', 'value', 'created_at']
    list_filter = ['value', 'created_at']
    search_fields = ['user__username']

    # Votes go through votes.cast_vote
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PostComment)
class PostCommentAdmin(CoreDeleteMixin, admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__username']

    def delete_core(self, request, obj):
        services.remove_comment(principal_for(request.user), obj.pk)
