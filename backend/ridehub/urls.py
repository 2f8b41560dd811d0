from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # Token endpoints for API and WebSocket clients (accounts are managed elsewhere)
    path('api/auth/token/', TokenObtainPairView.as_view(), name='token-obtain'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),

    # Passenger APIs (request rides, review and accept offers, cancel)
    path('api/passenger/', include('passengers.urls')),

    # Driver APIs (presence, bids, current ride)
    path('api/driver/', include('drivers.urls')),

    # Shared ride endpoints (feed, detail, transitions)
    path('api/rides/', include('rides.urls')),
]
