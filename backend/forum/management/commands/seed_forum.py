"""
Management command to seed the database with sample forum data.

Every row goes through the core (categories / services / votes), so the
seeded counters are exactly what production code would produce.

Usage: python manage.py seed_forum
"""

import random
from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

from forum import categories, services
from forum.models import Category, Thread, Profile, Role, UserStatus
from forum.permissions import principal_for
from forum.votes import cast_vote

User = get_user_model()

CATEGORY_TREE = [
    ('General', [
        ('Announcements', []),
        ('Introductions', []),
    ]),
    ('Development', [
        ('Python', [('Django', [])]),
        ('Databases', []),
    ]),
    ('Off Topic', []),
]

TITLES = [
    "Just discovered this amazing trick",
    "What do you think about",
    "Help needed with a problem",
    "Check out my latest project",
    "Question for the community",
    "Sharing my experience with",
]

CONTENTS = [
    "I've been working on this for a while and wanted to share my thoughts with the community.",
    "Has anyone else experienced this? I'd love to hear your perspectives.",
    "Here's what I learned after years of experience in this field.",
]

REPLIES = [
    "nice post!",
    "Thanks for sharing, this helped me a lot.",
    "I disagree, but interesting point.",
    "Same thing happened to me last week.",
]


class Command(BaseCommand):
    help = 'Seed the database with a category tree, users, threads, replies and votes'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=5,
            help='Number of users to create'
        )
        parser.add_argument(
            '--threads',
            type=int,
            default=10,
            help='Number of threads to create'
        )
        parser.add_argument(
            '--replies',
            type=int,
            default=30,
            help='Number of replies to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing forum data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Thread.objects.all().delete()
            Category.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating categories...')
        leaves = self._create_categories(CATEGORY_TREE, None)

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])
        principals = [principal_for(user) for user in users]

        self.stdout.write('Creating threads...')
        threads = self._create_threads(principals, leaves, options['threads'])

        self.stdout.write('Creating replies and votes...')
        posts = self._create_replies(principals, threads, options['replies'])
        votes = self._create_votes(principals, posts)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {Category.objects.count()} categories\n'
            f'  - {len(users)} users\n'
            f'  - {len(threads)} threads\n'
            f'  - {len(posts)} replies\n'
            f'  - {votes} votes'
        ))

    def _create_categories(self, nodes, parent):
        leaves = []
        for order, (name, children) in enumerate(nodes):
            category = Category.objects.filter(name=name).first()
            if category is None:
                category = categories.create_category(
                    name,
                    parent.pk if parent else None,
                    display_order=order,
                )
            if children:
                leaves.extend(self._create_categories(children, category))
            else:
                leaves.append(category)
        return leaves

    def _create_users(self, count):
        users = []
        for i in range(count):
            username = f'user{i+1}'
            user = User.objects.filter(username=username).first()
            if user is None:
                user = User.objects.create_user(
                    username=username,
                    email=f'{username}@example.com',
                    password='password123'
                )
            role = Role.MODERATOR if i == 0 else Role.USER
            Profile.objects.update_or_create(
                user=user,
                defaults={'role': role, 'status': UserStatus.ACTIVE},
            )
            users.append(User.objects.select_related('forum_profile').get(pk=user.pk))
        return users

    def _create_threads(self, principals, leaves, count):
        threads = []
        for i in range(count):
            thread = services.create_thread(
                random.choice(principals),
                random.choice(leaves).pk,
                f"{random.choice(TITLES)} #{Thread.objects.count() + 1}",
                random.choice(CONTENTS),
            )
            threads.append(thread)
        return threads

    def _create_replies(self, principals, threads, count):
        posts = []
        if not threads:
            return posts
        for i in range(count):
            posts.append(services.create_reply(
                random.choice(principals),
                random.choice(threads).pk,
                random.choice(REPLIES),
            ))
        return posts

    def _create_votes(self, principals, posts):
        votes = 0
        for post in posts:
            for principal in random.sample(principals, k=random.randint(0, len(principals))):
                cast_vote(principal, post.pk, random.choice([1, 1, 1, -1]))
                votes += 1
        return votes
