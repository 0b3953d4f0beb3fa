from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .validators import validate_image_type, validate_upload_size


class Boss(models.Model):
    """
    A boss whose kills drop loot. Bosses cannot be deleted while kills
    reference them.
    """
    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Boss name"
    )

    description = models.TextField(blank=True)

    dkp_points = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="DKP awarded to each attendee of a kill"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = "Bosses"

    def __str__(self):
        return self.name


class BossKill(models.Model):
    """
    One kill event. Its status summarises the status of its dropped items.
    """

    STATUS_PENDING = 'pending'
    STATUS_ASSIGNED = 'assigned'
    STATUS_EXPIRED = 'expired'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ASSIGNED, 'Assigned'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    boss = models.ForeignKey(
        Boss,
        on_delete=models.PROTECT,
        related_name='kills',
        help_text="Boss that was killed"
    )

    kill_time = models.DateTimeField(
        default=timezone.now,
        help_text="When the boss was killed"
    )

    attendees = models.JSONField(
        default=list,
        blank=True,
        help_text="Character names present at the kill"
    )

    item_holder = models.CharField(
        max_length=64,
        blank=True,
        help_text="Character holding the loot in game until it is handed over"
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    dkp_distributed = models.BooleanField(
        default=False,
        help_text="Whether attendance DKP was paid out for this kill"
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_kills'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-kill_time']
        indexes = [
            models.Index(fields=['status', '-kill_time'], name='loot_kill_status_idx'),
        ]

    def __str__(self):
        return f"{self.boss.name} @ {self.kill_time:%Y-%m-%d %H:%M}"

    def has_attendee(self, character_name) -> bool:
        return bool(character_name) and character_name in (self.attendees or [])

    @property
    def final_recipients(self):
        """Recipients of this kill's items, in item order."""
        return [item.final_recipient for item in self.items.all() if item.final_recipient]

    def summarize_status(self, item_statuses) -> str:
        statuses = set(item_statuses)
        if not statuses or DroppedItem.STATUS_PENDING in statuses:
            return self.STATUS_PENDING
        if statuses <= {DroppedItem.STATUS_ASSIGNED, DroppedItem.STATUS_SOLD}:
            return self.STATUS_ASSIGNED
        return self.STATUS_EXPIRED

    def refresh_status(self) -> str:
        """Recompute and persist the kill status from its items."""
        new_status = self.summarize_status(self.items.values_list('status', flat=True))
        if new_status != self.status:
            BossKill.objects.filter(pk=self.pk).update(status=new_status, updated_at=timezone.now())
            self.status = new_status
        return new_status


class DroppedItem(models.Model):
    """
    One lootable item from a kill, with its own application deadline.

    pending -> assigned                 application approved or admin assignment
    pending -> expired                  deadline passed with no recipient
    expired -> auctioned -> sold        auction finished with a winner
    auctioned -> expired                auction cancelled or ended without bids
    """

    TYPE_EQUIPMENT = 'equipment'
    TYPE_SKILL = 'skill'

    TYPE_CHOICES = [
        (TYPE_EQUIPMENT, 'Equipment'),
        (TYPE_SKILL, 'Skill Book'),
    ]

    STATUS_PENDING = 'pending'
    STATUS_ASSIGNED = 'assigned'
    STATUS_EXPIRED = 'expired'
    STATUS_AUCTIONED = 'auctioned'
    STATUS_SOLD = 'sold'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ASSIGNED, 'Assigned'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_AUCTIONED, 'Auctioned'),
        (STATUS_SOLD, 'Sold'),
    ]

    kill = models.ForeignKey(
        BossKill,
        on_delete=models.CASCADE,
        related_name='items'
    )

    name = models.CharField(max_length=100)

    item_type = models.CharField(
        max_length=20,
        choices=TYPE_CHOICES,
        default=TYPE_EQUIPMENT
    )

    level = models.PositiveIntegerField(null=True, blank=True)

    apply_deadline = models.DateTimeField(
        help_text="Applications close at this time"
    )

    final_recipient = models.CharField(
        max_length=64,
        blank=True,
        help_text="Character that received the item"
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    expired_at = models.DateTimeField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['kill', 'pk']
        indexes = [
            models.Index(fields=['status', 'apply_deadline'], name='loot_item_deadline_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_status_display()})"

    @property
    def is_claimed(self) -> bool:
        return bool(self.final_recipient)

    def is_open_for_applications(self, now=None) -> bool:
        now = now or timezone.now()
        return (
            self.status == self.STATUS_PENDING
            and not self.final_recipient
            and self.apply_deadline > now
        )


class KillScreenshot(models.Model):
    kill = models.ForeignKey(
        BossKill,
        on_delete=models.CASCADE,
        related_name='screenshots'
    )
    image = models.FileField(
        upload_to='uploads/kills/%Y/%m/',
        validators=[validate_upload_size, validate_image_type]
    )
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['pk']

    def __str__(self):
        return self.image.name


class Application(models.Model):
    """
    A member's claim on one dropped item.
    ``assigned`` marks the applicant who received the item through a direct
    admin assignment instead of an approval.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_ASSIGNED = 'assigned'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_ASSIGNED, 'Assigned'),
    ]

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_APPROVED)
    WINNING_STATUSES = (STATUS_APPROVED, STATUS_ASSIGNED)

    applicant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='loot_applications'
    )

    kill = models.ForeignKey(
        BossKill,
        on_delete=models.CASCADE,
        related_name='applications'
    )

    item = models.ForeignKey(
        DroppedItem,
        on_delete=models.CASCADE,
        related_name='applications'
    )

    # Kept so the history reads correctly if the item is renamed
    item_name = models.CharField(max_length=100)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_loot_applications'
    )

    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']
        indexes = [
            models.Index(fields=['status', '-created_at'], name='loot_app_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['applicant', 'item'],
                condition=Q(status__in=['pending', 'approved']),
                name='loot_one_active_application_per_item',
            ),
            models.UniqueConstraint(
                fields=['item'],
                condition=Q(status__in=['approved', 'assigned']),
                name='loot_one_winning_application_per_item',
            ),
        ]

    def __str__(self):
        return f"{self.applicant} -> {self.item_name} ({self.status})"


class AttendeeRequest(models.Model):
    """
    Request to be added to a kill's attendee list after the fact.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='attendee_requests'
    )

    kill = models.ForeignKey(
        BossKill,
        on_delete=models.CASCADE,
        related_name='attendee_requests'
    )

    character_name = models.CharField(max_length=64)

    proof_image = models.FileField(
        upload_to='uploads/proofs/%Y/%m/',
        blank=True,
        validators=[validate_upload_size, validate_image_type]
    )

    reason = models.TextField(blank=True)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    comment = models.TextField(
        blank=True,
        help_text="Reviewer comment, required on rejection"
    )

    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_attendee_requests'
    )

    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']

    def __str__(self):
        return f"{self.character_name} @ {self.kill_id} ({self.status})"


class Auction(models.Model):
    """
    Sale of an item that expired unclaimed.

    active -> settling -> completed -> settled
    active/settling -> cancelled
    """

    TYPE_OPEN = 'open'
    TYPE_BLIND = 'blind'
    TYPE_LOTTERY = 'lottery'

    TYPE_CHOICES = [
        (TYPE_OPEN, 'Open'),
        (TYPE_BLIND, 'Blind'),
        (TYPE_LOTTERY, 'Lottery'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_SETTLING = 'settling'
    STATUS_COMPLETED = 'completed'
    STATUS_SETTLED = 'settled'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SETTLING, 'Settling'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_SETTLED, 'Settled'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    LIVE_STATUSES = (STATUS_ACTIVE, STATUS_SETTLING, STATUS_COMPLETED, STATUS_SETTLED)

    kill = models.ForeignKey(
        BossKill,
        on_delete=models.PROTECT,
        related_name='auctions'
    )

    item = models.ForeignKey(
        DroppedItem,
        on_delete=models.PROTECT,
        related_name='auctions'
    )

    item_name = models.CharField(max_length=100)

    auction_type = models.CharField(
        max_length=10,
        choices=TYPE_CHOICES,
        default=TYPE_OPEN
    )

    starting_price = models.PositiveIntegerField()
    current_price = models.PositiveIntegerField()
    buyout_price = models.PositiveIntegerField(null=True, blank=True)

    end_time = models.DateTimeField()

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='created_auctions'
    )

    item_holder = models.CharField(
        max_length=64,
        blank=True,
        help_text="Character who hands the item to the winner"
    )

    highest_bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='leading_auctions'
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE
    )

    # Bidder restrictions
    same_world = models.BooleanField(default=False)
    has_attended = models.BooleanField(default=False)
    same_guild = models.BooleanField(default=False)
    dkp_threshold = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']
        indexes = [
            models.Index(fields=['status', 'end_time'], name='loot_auction_due_idx'),
        ]

    def __str__(self):
        return f"{self.item_name} ({self.get_auction_type_display()}, {self.status})"

    @property
    def reference(self) -> str:
        return f"auction:{self.pk}"

    def is_open(self, now=None) -> bool:
        now = now or timezone.now()
        return self.status == self.STATUS_ACTIVE and self.end_time > now


class Bid(models.Model):
    """
    One bid. ``held_amount`` is reserved in the bidder's wallet until the
    auction settles or the bid is outbid.
    """

    HOLD_HELD = 'held'
    HOLD_RELEASED = 'released'
    HOLD_CAPTURED = 'captured'

    HOLD_CHOICES = [
        (HOLD_HELD, 'Held'),
        (HOLD_RELEASED, 'Released'),
        (HOLD_CAPTURED, 'Captured'),
    ]

    auction = models.ForeignKey(
        Auction,
        on_delete=models.CASCADE,
        related_name='bids'
    )

    bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bids'
    )

    amount = models.PositiveIntegerField()
    held_amount = models.PositiveIntegerField(default=0)

    hold_status = models.CharField(
        max_length=10,
        choices=HOLD_CHOICES,
        default=HOLD_HELD
    )

    idempotency_key = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Client key; a repeated key returns the original bid"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-amount', 'created_at', 'pk']
        constraints = [
            models.UniqueConstraint(
                fields=['auction', 'bidder', 'idempotency_key'],
                name='loot_bid_idempotency_key',
            ),
        ]

    def __str__(self):
        return f"{self.bidder} bid {self.amount} on {self.auction_id}"


class Notification(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    message = models.CharField(max_length=500)
    auction = models.ForeignKey(
        Auction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications'
    )
    vote = models.ForeignKey(
        'Vote',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications'
    )
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']
        indexes = [
            models.Index(fields=['user', 'read'], name='loot_notif_unread_idx'),
        ]

    def __str__(self):
        return f"To {self.user}: {self.message[:40]}"


class Vote(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_CLOSED = 'closed'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_CLOSED, 'Closed'),
    ]

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    multiple_choice = models.BooleanField(default=False)
    end_time = models.DateTimeField()
    status = models.CharField(
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_votes'
    )
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']

    def __str__(self):
        return self.title


class VoteOption(models.Model):
    vote = models.ForeignKey(
        Vote,
        on_delete=models.CASCADE,
        related_name='options'
    )
    text = models.CharField(max_length=200)

    class Meta:
        ordering = ['pk']

    def __str__(self):
        return self.text


class Ballot(models.Model):
    vote = models.ForeignKey(
        Vote,
        on_delete=models.CASCADE,
        related_name='ballots'
    )
    option = models.ForeignKey(
        VoteOption,
        on_delete=models.CASCADE,
        related_name='ballots'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ballots'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['vote', 'user', 'option'],
                name='loot_one_ballot_per_option',
            ),
        ]

    def __str__(self):
        return f"{self.user} -> {self.option}"
