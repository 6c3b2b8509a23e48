"""
Organization membership and event lookup API.
"""
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ErrorKind, ServiceError, error_response
from apps.core.permissions import HasEventRole
from apps.events.models import Event, OrganizationMembership
from apps.events.permissions import HasOrganizationRole
from apps.events.serializers import (
    EventSerializer,
    MemberCreateSerializer,
    MemberRoleSerializer,
    OrganizationMembershipSerializer,
)
from apps.events.services import OrganizationService


@extend_schema_view(
    get=extend_schema(
        tags=['Organizations'],
        summary='List organization members',
        responses={200: OrganizationMembershipSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Organizations'],
        summary='Add an organization member',
        request=MemberCreateSerializer,
        responses={201: OrganizationMembershipSerializer},
    ),
)
class OrganizationMemberListView(APIView):
    """
    GET/POST /v1/organizations/{org_id}/members
    """
    permission_classes = [HasOrganizationRole]

    def get(self, request, org_id):
        members = OrganizationMembership.objects.for_organization(org_id)
        return Response(OrganizationMembershipSerializer(members, many=True).data)

    def post(self, request, org_id):
        serializer = MemberCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrganizationService.add_member(
            org_id,
            serializer.validated_data['user_id'],
            serializer.validated_data['role'],
            actor=request.user,
            request=request,
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(OrganizationMembershipSerializer(result.value).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    patch=extend_schema(
        tags=['Organizations'],
        summary='Change a member role',
        request=MemberRoleSerializer,
        responses={200: OrganizationMembershipSerializer},
    ),
    delete=extend_schema(
        tags=['Organizations'],
        summary='Remove an organization member',
        description='The last organization admin cannot be removed.',
        responses={204: None},
    ),
)
class OrganizationMemberDetailView(APIView):
    """
    PATCH/DELETE /v1/organizations/{org_id}/members/{user_id}
    """
    permission_classes = [HasOrganizationRole]

    def patch(self, request, org_id, user_id):
        serializer = MemberRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrganizationService.update_member_role(
            org_id, user_id, serializer.validated_data['role'], actor=request.user, request=request
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(OrganizationMembershipSerializer(result.value).data)

    def delete(self, request, org_id, user_id):
        result = OrganizationService.remove_member(org_id, user_id, actor=request.user, request=request)
        if not result.ok:
            return error_response(result.error, request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(tags=['Events'], summary='Get an event by slug', responses={200: EventSerializer}),
)
class EventBySlugView(APIView):
    """
    GET /v1/events/by-slug/{slug}
    """
    permission_classes = [HasEventRole]

    def get(self, request, slug):
        event = Event.objects.by_slug(slug)
        if event is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "Event does not exist.", 'EVENT_NOT_FOUND')
        return Response(EventSerializer(event).data)
