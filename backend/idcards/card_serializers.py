from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from .card_registry import IMAGE_TOKENS, TOKEN_PATTERN
from .card_templates import CardTemplate, ImageElement, template_from_payload


def _is_allowed_inline_source(source: str) -> bool:
    source = source.strip()
    if not source or source.startswith("data:"):
        return True
    token = TOKEN_PATTERN.fullmatch(source)
    if token:
        return token.group(1) in IMAGE_TOKENS
    media_url = settings.MEDIA_URL
    return bool(media_url) and source.startswith(media_url) and "{{" not in source


class CardTemplateSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    category = serializers.CharField(allow_blank=True)
    description = serializers.CharField(allow_blank=True)
    width = serializers.FloatField()
    height = serializers.FloatField()
    backgroundColor = serializers.CharField()
    elements = serializers.ListField(child=serializers.DictField())
    is_default = serializers.BooleanField(read_only=True)


class CardTokenSerializer(serializers.Serializer):
    key = serializers.CharField()
    label = serializers.CharField()
    description = serializers.CharField()
    kind = serializers.ChoiceField(choices=["text", "image"])


class CardPreviewRequestSerializer(serializers.Serializer):
    employee_id = serializers.CharField(required=False, allow_blank=False)
    template = serializers.JSONField(required=False)

    def validate_template(self, value) -> CardTemplate:
        try:
            template = template_from_payload(value)
        except DjangoValidationError as exc:
            if hasattr(exc, "message_dict"):
                raise serializers.ValidationError(exc.message_dict) from exc
            raise serializers.ValidationError(exc.messages) from exc

        limit = settings.IDCARD_MAX_CARD_SIZE_IN
        if template.width > limit or template.height > limit:
            raise serializers.ValidationError(f"Card width and height must be <= {limit:g} inches.")
        for index, element in enumerate(template.elements):
            if isinstance(element, ImageElement) and not _is_allowed_inline_source(element.source):
                raise serializers.ValidationError(
                    {f"elements[{index}].source": "Image source must be a token, a data URI or a media path."}
                )
        return template


class CardRasterRequestSerializer(CardPreviewRequestSerializer):
    dpi = serializers.FloatField(required=False, min_value=1, max_value=1200)


class CardPrintRequestSerializer(serializers.Serializer):
    class Mode:
        INTERACTIVE = "interactive"
        RASTER = "raster"

    employee_ids = serializers.ListField(
        child=serializers.CharField(),
        allow_empty=False,
    )
    mode = serializers.ChoiceField(
        choices=[Mode.INTERACTIVE, Mode.RASTER],
        required=False,
        default=Mode.INTERACTIVE,
    )
    dpi = serializers.FloatField(required=False, min_value=1, max_value=1200)
    title = serializers.CharField(required=False, default="ID Cards", max_length=200)

    def validate_employee_ids(self, value):
        if len(set(value)) != len(value):
            raise serializers.ValidationError("employee_ids must not contain duplicates.")
        limit = settings.IDCARD_MAX_BATCH_SIZE
        if len(value) > limit:
            raise serializers.ValidationError(f"At most {limit} cards can be printed at once.")
        return value


class CardPreviewSerializer(serializers.Serializer):
    template_id = serializers.CharField()
    html = serializers.CharField()
    tree = serializers.DictField()
