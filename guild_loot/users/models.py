from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from typing import Optional


class Guild(models.Model):
    """
    A guild is the tenant that owns kills, auctions and the public fund.
    Its settings drive application deadlines and auction revenue splits.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Guild name"
    )

    announcement = models.TextField(
        blank=True,
        help_text="Announcement shown to guild members"
    )

    apply_deadline_hours = models.PositiveIntegerField(
        default=48,
        validators=[MinValueValidator(1)],
        help_text="Hours after a kill during which members may apply for its items"
    )

    public_fund_rate = models.DecimalField(
        max_digits=4,
        decimal_places=3,
        default=Decimal('0.100'),
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('1'))],
        help_text="Share of every auction sale paid into the guild fund"
    )

    withdraw_min_amount = models.PositiveIntegerField(
        default=100,
        help_text="Smallest diamond amount a member may withdraw"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class UserManager(DjangoUserManager):
    """Custom manager for User model with character lookups."""

    def get_by_character_name(self, character_name: str) -> Optional['User']:
        """Get user by in-game character name.

        Args:
            character_name (str): Character name as recorded on kills

        Returns:
            Optional[User]: User instance or None if not found
        """
        if not character_name:
            return None
        try:
            return self.get(character_name=character_name)
        except self.model.DoesNotExist:
            return None

    def for_characters(self, character_names):
        """Users whose character is in the given list of names."""
        names = [name for name in character_names if name]
        return self.filter(character_name__in=names)

    def guild_account(self, guild=None) -> Optional['User']:
        """Get the account that collects the fund of ``guild``.

        Only accounts belonging to that guild qualify; ``guild=None`` matches
        a guild account that belongs to no guild.

        Returns:
            Optional[User]: Guild account or None if the guild has none
        """
        return (
            self.filter(role_group=self.model.ROLE_GUILD, is_active=True, guild=guild)
            .order_by('pk')
            .first()
        )


class User(AbstractUser):
    """
    Default custom user model for guild_loot.
    A user plays one character, which is the name recorded in kill attendee
    lists and item recipients.
    """

    # First and last name do not cover name patterns around the globe
    name = models.CharField("Name of User", blank=True, max_length=255)
    first_name = None  # type: ignore[assignment]
    last_name = None  # type: ignore[assignment]

    character_name = models.CharField(
        "Character Name", max_length=64, unique=True, null=True, blank=True
    )
    world_name = models.CharField(
        "World Name", max_length=64, blank=True
    )

    ROLE_ADMIN = 'admin'
    ROLE_MODERATOR = 'moderator'
    ROLE_GUILD = 'guild'
    ROLE_USER = 'user'

    # Role and permission system
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Admin'),
        (ROLE_MODERATOR, 'Moderator'),
        (ROLE_GUILD, 'Guild Account'),
        (ROLE_USER, 'User'),
    ]

    role_group = models.CharField(
        "Role Group",
        max_length=20,
        choices=ROLE_CHOICES,
        default=ROLE_USER,
        help_text="User's role within the guild"
    )

    STATUS_PENDING = 'pending'
    STATUS_ACTIVE = 'active'
    STATUS_DISABLED = 'disabled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_DISABLED, 'Disabled'),
    ]

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        help_text="Account status; disabled accounts cannot sign in"
    )

    guild = models.ForeignKey(
        Guild,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='members',
        help_text="Guild this user belongs to"
    )

    # Custom manager
    objects = UserManager()

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['character_name'], name='users_charact_idx'),
            models.Index(fields=['role_group'], name='users_role_gr_idx'),
            models.Index(fields=['status'], name='users_status_idx'),
        ]

    def __str__(self):
        return self.character_name or self.username

    def save(self, *args, **kwargs):
        # Blank names would collide on the unique index
        if not self.character_name:
            self.character_name = None
        super().save(*args, **kwargs)

    def get_absolute_url(self) -> str:
        """Get URL for user's detail view.

        Returns:
            str: URL for user detail.
        """
        return f"/api/users/{self.pk}"

    @property
    def display_name(self) -> str:
        return self.character_name or self.username

    def get_role_display_name(self) -> str:
        """Get display name for user's role.

        Returns:
            str: Role display name
        """
        return dict(self.ROLE_CHOICES).get(self.role_group, 'Unknown')

    @property
    def apply_deadline_hours(self) -> int:
        """Application window for kills this user records."""
        if self.guild_id:
            return self.guild.apply_deadline_hours
        return getattr(settings, 'LOOT_DEFAULT_APPLY_DEADLINE_HOURS', 48)

    @property
    def public_fund_rate(self) -> Decimal:
        """Share of auction proceeds this user's guild keeps."""
        if self.guild_id:
            return self.guild.public_fund_rate
        return Decimal(str(getattr(settings, 'LOOT_DEFAULT_PUBLIC_FUND_RATE', '0.1')))

    def disable(self) -> None:
        """Disable the account and block sign in."""
        self.status = self.STATUS_DISABLED
        self.is_active = False
        self.save(update_fields=['status', 'is_active'])


class MenuItem(models.Model):
    """
    Navigation entry. Visibility is decided per request from ``roles``; an
    empty list means every signed-in user sees it.
    """

    title = models.CharField(max_length=64)
    path = models.CharField(max_length=200, blank=True)
    icon = models.CharField(max_length=64, blank=True)
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='children'
    )
    order = models.PositiveIntegerField(default=0)
    roles = models.JSONField(
        default=list,
        blank=True,
        help_text="Role groups allowed to see this entry"
    )

    class Meta:
        ordering = ['order', 'pk']

    def __str__(self):
        return self.title

    def is_visible_to(self, user) -> bool:
        if not self.roles or user.is_superuser:
            return True
        return user.role_group in self.roles
