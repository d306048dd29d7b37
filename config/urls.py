"""smashscheduler URL Configuration."""

from django.conf import settings
from django.contrib import admin
from django.contrib.staticfiles.urls import staticfiles_urlpatterns
from django.urls import include
from django.urls import path

from smashscheduler.api.main import api

urlpatterns = [
    # Django Admin, use {% url 'admin:index' %}
    path(settings.ADMIN_URL, admin.site.urls),
    # Stripe webhooks
    path("billing/", include("smashscheduler.billing.urls", namespace="billing")),
    # JSON API
    path("api/", api.urls),
]

if settings.DEBUG:
    # Static file serving when using Gunicorn + Uvicorn for local development
    urlpatterns += staticfiles_urlpatterns()
