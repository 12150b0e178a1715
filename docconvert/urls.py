from django.urls import include, path

urlpatterns = [
    path("", include("api.urls")),
]

handler404 = "api.exceptions.not_found"
