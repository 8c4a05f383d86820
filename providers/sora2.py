from providers.laozhang import LaozhangVideoAdapter


class Sora2Adapter(LaozhangVideoAdapter):
    """Sora 2 through Laozhang. Always model 'sora-2'; size and seconds are separate params."""

    tool = "sora2"
    name = "Sora2"
    MODEL = "sora-2"

    def _build_fields(self, request):
        return {
            "model": self.MODEL,
            "prompt": request.prompt,
            "size": request.size,
            "seconds": str(request.seconds),
        }
