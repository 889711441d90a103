# apps/catalog/models.py
from django.core.validators import MinValueValidator
from django.db import models
from django.utils.text import slugify

from apps.utils.models import TimestampedModel


class Product(TimestampedModel):
    """
    Sellable item. `stock` is the available-to-sell count and is only ever
    changed through apps.inventory.services.InventoryService.
    """
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, blank=True, db_index=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=100, blank=True, db_index=True)
    image_url = models.URLField(blank=True)

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
    )
    stock = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["is_active", "category"], name="product_active_category_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0),
                name="product_stock_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name="product_price_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.stock} in stock)"

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.name) or "product"
            slug = base
            i = 1
            while Product.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base}-{i}"
                i += 1
            self.slug = slug

        if self._state.adding:
            super().save(*args, **kwargs)
            return

        # Existing rows never write stock back; it moves only through InventoryService
        fields = kwargs.get("update_fields")
        if fields is None:
            fields = [f.attname for f in self._meta.concrete_fields if not f.primary_key]
        kwargs["update_fields"] = [name for name in fields if name != "stock"]
        super().save(*args, **kwargs)
        self.refresh_from_db(using=kwargs.get("using"), fields=["stock"])
