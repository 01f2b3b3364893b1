"""
Django Signals
==============

Every new auth user gets a forum Profile.

Counters are NOT maintained through signals. Signals do not fire on
QuerySet.update() / bulk operations and are easy to bypass, so counter
propagation is an explicit call from services.py (see counters.py).

The one exception is user deletion: Django's CASCADE removes the user's
votes without going through the vote ledger, so a pre_delete receiver
retracts them first. User.delete() and QuerySet.delete() both send it.
"""

from django.conf import settings
from django.db.models.signals import post_save, pre_delete
from django.dispatch import receiver

from .models import Profile, Role, UserStatus
from .votes import retract_user_votes


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_forum_profile(sender, instance, created, **kwargs):
    """
    Create the Profile for a new user.

    Superusers (createsuperuser) start as active admins; everyone else
    starts as a user pending verification.
    """
    if not created:
        return
    if instance.is_superuser:
        defaults = {'role': Role.ADMIN, 'status': UserStatus.ACTIVE}
    else:
        defaults = {'role': Role.USER, 'status': UserStatus.PENDING_VERIFICATION}
    Profile.objects.get_or_create(user=instance, defaults=defaults)


@receiver(pre_delete, sender=settings.AUTH_USER_MODEL)
def retract_votes_of_deleted_user(sender, instance, **kwargs):
    # Runs inside the deletion's transaction
    retract_user_votes(instance.pk)
