from django.contrib import admin
from unfold.admin import ModelAdmin
from unfold.admin import TabularInline

from .models import Club
from .models import ClubOrganiser


class ClubOrganiserInline(TabularInline):
    model = ClubOrganiser
    extra = 0
    raw_id_fields = ["user"]


@admin.register(Club)
class ClubAdmin(ModelAdmin):
    list_display = ["name", "slug", "created_by", "created_at"]
    search_fields = ["name", "slug"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["created_by"]
    inlines = [ClubOrganiserInline]


@admin.register(ClubOrganiser)
class ClubOrganiserAdmin(ModelAdmin):
    list_display = ["club", "user", "created_at"]
    search_fields = ["club__name", "user__username", "user__email"]
    raw_id_fields = ["club", "user"]
