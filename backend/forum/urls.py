"""
Forum App URL Configuration
"""
from django.urls import path
from .views import (
    CategoryListView,
    CategoryDetailView,
    CategoryThreadsView,
    ThreadCreateView,
    ThreadDetailView,
    ThreadPostsView,
    PostDetailView,
    PostVoteView,
    PostCommentsView,
    CommentDetailView,
    RegisterView,
    VerifyEmailView,
    ResendVerificationView,
    LoginView,
    LogoutView,
    WhoAmIView,
    UserListView,
    MyProfileView,
    UserDetailView,
)

urlpatterns = [
    # Categories
    path('categories/', CategoryListView.as_view(), name='category-list'),
    path('categories/<str:id_or_slug>/', CategoryDetailView.as_view(), name='category-detail'),
    path('categories/<str:id_or_slug>/threads/', CategoryThreadsView.as_view(), name='category-threads'),

    # Threads
    path('threads/', ThreadCreateView.as_view(), name='thread-create'),
    path('threads/<str:id_or_slug>/', ThreadDetailView.as_view(), name='thread-detail'),
    path('threads/<str:id_or_slug>/posts/', ThreadPostsView.as_view(), name='thread-posts'),

    # Posts
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/vote/', PostVoteView.as_view(), name='post-vote'),
    path('posts/<int:post_id>/comments/', PostCommentsView.as_view(), name='post-comments'),

    # Comments
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),

    # Auth
    path('auth/register/', RegisterView.as_view(), name='register'),
    path('auth/verify/', VerifyEmailView.as_view(), name='verify-email'),
    path('auth/resend-verification/', ResendVerificationView.as_view(), name='resend-verification'),
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),

    # Users
    path('users/', UserListView.as_view(), name='user-list'),
    path('users/me/', MyProfileView.as_view(), name='user-me'),
    path('users/<str:identifier>/', UserDetailView.as_view(), name='user-detail'),
]
