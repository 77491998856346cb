"""
Business model.

A business (restaurant, venue) is the tenant boundary for roles and
administrator accounts. Only the fields the authorization layer needs live
here; venue management builds on top of this table.
"""
from django.db import models
from apps.core.models import BaseModel, BaseModelManager


class Business(BaseModel):
    """
    A restaurant or venue account.

    Business-scoped roles and restaurant administrators point here. A
    business admin never sees roles or admins of another business.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
        ('closed', 'Closed'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Business name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Current business status"
    )
    contact_email = models.EmailField(
        null=True,
        blank=True,
        help_text="Primary contact email"
    )

    objects = BaseModelManager()

    class Meta:
        db_table = 'businesses'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def is_active(self):
        return self.status == 'active'
