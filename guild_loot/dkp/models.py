from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models, transaction

from guild_loot.loot.exceptions import InsufficientFunds, InvalidState, ValidationFailed


class Wallet(models.Model):
    """
    Per-user balances: diamonds for auctions and DKP for participation.
    Diamonds held by open bids stay in ``diamonds`` but are excluded from
    ``available_diamonds``.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='wallet',
        help_text="The user who owns this wallet"
    )

    diamonds = models.PositiveIntegerField(
        default=0,
        help_text="Diamond balance including held diamonds"
    )

    held_diamonds = models.PositiveIntegerField(
        default=0,
        help_text="Diamonds reserved by bids on open auctions"
    )

    dkp_points = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Current DKP balance"
    )

    updated_at = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-dkp_points', 'user__username']

    def __str__(self):
        return f"{self.user}: {self.diamonds} diamonds, {self.dkp_points} DKP"

    @property
    def available_diamonds(self) -> int:
        return self.diamonds - self.held_diamonds


class LedgerEntry(models.Model):
    """
    Append-only record of every currency movement.
    Holds and releases do not change the balance but are kept for audit.
    """

    CURRENCY_DIAMONDS = 'diamonds'
    CURRENCY_DKP = 'dkp'

    CURRENCY_CHOICES = [
        (CURRENCY_DIAMONDS, 'Diamonds'),
        (CURRENCY_DKP, 'DKP'),
    ]

    INCOME = 'income'
    EXPENSE = 'expense'
    HOLD = 'hold'
    RELEASE = 'release'
    PARTICIPATION = 'participation'
    SUPPLEMENT = 'supplement'
    DEDUCTION = 'deduction'
    ADJUSTMENT = 'adjustment'

    ENTRY_TYPES = [
        (INCOME, 'Income'),
        (EXPENSE, 'Expense'),
        (HOLD, 'Hold'),
        (RELEASE, 'Release'),
        (PARTICIPATION, 'Kill Participation'),
        (SUPPLEMENT, 'Supplement'),
        (DEDUCTION, 'Deduction'),
        (ADJUSTMENT, 'Manual Adjustment'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ledger_entries',
        help_text="The user whose balance moved"
    )

    currency = models.CharField(max_length=10, choices=CURRENCY_CHOICES)

    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPES)

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Amount moved; direction comes from the entry type"
    )

    description = models.CharField(max_length=255, blank=True)

    # e.g. "auction:12", "kill:3"
    reference = models.CharField(max_length=64, blank=True, db_index=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='ledger_entries_created',
        help_text="Admin who made a manual entry"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']
        indexes = [
            models.Index(fields=['user', '-created_at'], name='dkp_ledger_user_idx'),
            models.Index(fields=['currency', 'entry_type'], name='dkp_ledger_type_idx'),
        ]
        verbose_name_plural = "Ledger entries"

    def __str__(self):
        return f"{self.user}: {self.get_entry_type_display()} {self.amount} {self.currency}"


class WalletManager:
    """
    Balance operations. Every method that changes a balance locks the wallet
    row and must run inside the caller's transaction.
    """

    @staticmethod
    def get_wallet(user, lock=False) -> Wallet:
        """Get the user's wallet, creating an empty one if missing."""
        wallet, _ = Wallet.objects.get_or_create(user=user)
        if lock:
            wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)
        return wallet

    @staticmethod
    def get_available_diamonds(user) -> int:
        return WalletManager.get_wallet(user).available_diamonds

    @staticmethod
    def get_dkp_balance(user) -> Decimal:
        return WalletManager.get_wallet(user).dkp_points

    @staticmethod
    def _record(user, currency, entry_type, amount, description='', reference='', created_by=None):
        return LedgerEntry.objects.create(
            user=user,
            currency=currency,
            entry_type=entry_type,
            amount=amount,
            description=description,
            reference=reference,
            created_by=created_by,
        )

    @staticmethod
    def hold(user, amount: int, reference: str, description: str = '') -> Wallet:
        """
        Reserve diamonds for a bid.

        Raises:
            InsufficientFunds: If available diamonds are below ``amount``
        """
        if amount <= 0:
            raise ValidationFailed("Hold amount must be positive")

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            if wallet.available_diamonds < amount:
                raise InsufficientFunds(wallet.available_diamonds, amount)
            wallet.held_diamonds += amount
            wallet.save(update_fields=['held_diamonds', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DIAMONDS, LedgerEntry.HOLD, amount,
                description or f"Held for {reference}", reference
            )
        return wallet

    @staticmethod
    def release(user, amount: int, reference: str, description: str = '') -> Wallet:
        """Return held diamonds to the available balance."""
        if amount <= 0:
            return WalletManager.get_wallet(user)

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            wallet.held_diamonds = max(wallet.held_diamonds - amount, 0)
            wallet.save(update_fields=['held_diamonds', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DIAMONDS, LedgerEntry.RELEASE, amount,
                description or f"Released from {reference}", reference
            )
        return wallet

    @staticmethod
    def capture(user, amount: int, reference: str, description: str = '') -> Wallet:
        """
        Charge previously held diamonds. The hold and the balance drop by
        ``amount`` together, so a captured hold is debited exactly once.
        """
        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            if wallet.held_diamonds < amount:
                raise InvalidState(
                    f"Cannot capture {amount} diamonds; only {wallet.held_diamonds} held"
                )
            wallet.held_diamonds -= amount
            wallet.diamonds -= amount
            wallet.save(update_fields=['held_diamonds', 'diamonds', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DIAMONDS, LedgerEntry.EXPENSE, amount,
                description or f"Paid for {reference}", reference
            )
        return wallet

    @staticmethod
    def credit(user, amount: int, reference: str = '', description: str = '', created_by=None) -> Wallet:
        """Add diamonds to a wallet."""
        if amount <= 0:
            raise ValidationFailed("Credit amount must be positive")

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            wallet.diamonds += amount
            wallet.save(update_fields=['diamonds', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DIAMONDS, LedgerEntry.INCOME, amount,
                description, reference, created_by
            )
        return wallet

    @staticmethod
    def debit(user, amount: int, reference: str = '', description: str = '', created_by=None) -> Wallet:
        """Remove available diamonds from a wallet."""
        if amount <= 0:
            raise ValidationFailed("Debit amount must be positive")

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            if wallet.available_diamonds < amount:
                raise InsufficientFunds(wallet.available_diamonds, amount)
            wallet.diamonds -= amount
            wallet.save(update_fields=['diamonds', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DIAMONDS, LedgerEntry.EXPENSE, amount,
                description, reference, created_by
            )
        return wallet

    @staticmethod
    def award_dkp(user, points, entry_type=LedgerEntry.PARTICIPATION, description='',
                  reference='', created_by=None) -> Wallet:
        """
        Award DKP to a user.

        Args:
            user: User to award points to
            points: Amount of points (must be positive)
            entry_type: participation, supplement or adjustment
            description: Description of the award
            reference: Record the award belongs to
            created_by: Admin who made the award

        Returns:
            Wallet: The updated wallet
        """
        points = Decimal(points)
        if points <= 0:
            raise ValidationFailed("Points awarded must be positive")

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            wallet.dkp_points += points
            wallet.save(update_fields=['dkp_points', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DKP, entry_type, points,
                description, reference, created_by
            )
        return wallet

    @staticmethod
    def deduct_dkp(user, points, description='', reference='', created_by=None) -> Wallet:
        """Deduct DKP; the balance may not go negative."""
        points = Decimal(points)
        if points <= 0:
            raise ValidationFailed("Points deducted must be positive")

        with transaction.atomic():
            wallet = WalletManager.get_wallet(user, lock=True)
            if wallet.dkp_points < points:
                raise ValidationFailed(
                    f"This deduction would result in a negative balance. "
                    f"Current balance: {wallet.dkp_points}, Deduction: {points}"
                )
            wallet.dkp_points -= points
            wallet.save(update_fields=['dkp_points', 'updated_at'])
            WalletManager._record(
                user, LedgerEntry.CURRENCY_DKP, LedgerEntry.DEDUCTION, points,
                description, reference, created_by
            )
        return wallet
