from providers.laozhang import LaozhangVideoAdapter


class Veo3Adapter(LaozhangVideoAdapter):
    """
    Veo 3.1 through Laozhang.

    The model name carries the options: veo-3.1[-landscape][-fast][-fl],
    -fl when a first-frame image is supplied.
    """

    tool = "veo3"
    name = "Veo3"

    def _build_fields(self, request):
        return {
            "model": request.model_name,
            "prompt": request.prompt,
        }

    def _completed_extra(self, data):
        return {"duration": data.get("duration"), "resolution": data.get("resolution")}
