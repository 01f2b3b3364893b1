"""
Forumsite URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Forum API Server',
        'version': '1.0',
        'endpoints': {
            'categories': '/api/categories/',
            'threads': '/api/threads/<id_or_slug>/',
            'posts': '/api/posts/<id>/',
            'vote': '/api/posts/<id>/vote/',
            'comments': '/api/posts/<id>/comments/',
            'auth': '/api/auth/',
            'users': '/api/users/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('forum.urls')),
]
