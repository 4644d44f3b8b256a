"""Slide-generation pipeline.

Stages run strictly in order and each reports ``in_progress`` then
``completed`` on the progress channel; a fatal failure reports a single
``error`` event instead and ends the run:

    init -> url_crawl (summary only) -> prompt_setup -> llm_content
         -> save_initial_slides -> image_generation_overall -> finalize

Auth, LLM and parse/validation failures are fatal. Crawl failures and
individual image failures degrade the output but never stop the run.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from .errors import AuthenticationError, GenerationError, LLMError, NoValidSlidesError, ParseError
from .llm_providers import ChatModel
from .models import GenerationRequest, PersistedSlide, SlideDraft
from .progress import (
    STEP_FINALIZE,
    STEP_IMAGES,
    STEP_INIT,
    STEP_LLM_CONTENT,
    STEP_PROMPT_SETUP,
    STEP_SAVE_SLIDES,
    STEP_URL_CRAWL,
    ProgressChannel,
    error_event,
    final_event,
    slide_step_id,
    step_update,
)
from .prompts import build_generation_prompts
from .resolver import ContentResolver
from .security import require_caller
from .slide_parser import Found, locate_slides, validate_drafts
from .store import ObjectStorage, SlideStore, image_object_key

logger = logging.getLogger("slidecoach.orchestrator")


class ImageModel(Protocol):
    async def generate(self, prompt: str) -> bytes: ...


@dataclass(frozen=True)
class _PendingImage:
    slide: PersistedSlide
    image_prompt: str


class GenerationOrchestrator:
    def __init__(
        self,
        chat: ChatModel,
        images: ImageModel,
        slide_store: SlideStore,
        object_storage: ObjectStorage,
        resolver: ContentResolver,
        *,
        temperature: float = 0.5,
        max_tokens: int = 4096,
        image_concurrency: int = 1,
    ):
        self.chat = chat
        self.images = images
        self.slide_store = slide_store
        self.object_storage = object_storage
        self.resolver = resolver
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.image_concurrency = max(1, image_concurrency)

    async def run(
        self, request: GenerationRequest, caller_id: Optional[str], channel: ProgressChannel
    ) -> Optional[List[PersistedSlide]]:
        """Run every stage for ``request``; always closes ``channel``.

        Returns the final slides, or ``None`` when a fatal error ended the run.
        """
        stage = STEP_INIT
        try:
            channel.emit(step_update(STEP_INIT, "in_progress", "Initializing presentation generation..."))
            require_caller(caller_id)
            channel.emit(step_update(STEP_INIT, "completed", "Initialization complete."))

            stage = STEP_URL_CRAWL
            resolved = await self.resolver.resolve(request, channel)

            stage = STEP_PROMPT_SETUP
            channel.emit(step_update(STEP_PROMPT_SETUP, "in_progress", "Setting up generation prompts..."))
            prompts = build_generation_prompts(request, resolved.text)
            channel.emit(step_update(STEP_PROMPT_SETUP, "completed", "Prompts configured."))

            stage = STEP_LLM_CONTENT
            channel.emit(step_update(STEP_LLM_CONTENT, "in_progress", "Generating slide content with AI..."))
            items = await self._draft_slides(prompts.system, prompts.user)
            channel.emit(step_update(STEP_LLM_CONTENT, "completed", "Slide content generated."))

            stage = STEP_SAVE_SLIDES
            channel.emit(step_update(STEP_SAVE_SLIDES, "in_progress", "Saving slide structure..."))
            drafts, skipped = validate_drafts(items)
            if not drafts:
                raise NoValidSlidesError("No valid slides could be saved.")
            pending = self._save_drafts(request.presentation_id, drafts)
            note = f" ({skipped} invalid slide(s) skipped)" if skipped else ""
            channel.emit(step_update(STEP_SAVE_SLIDES, "completed", f"Slide structure saved{note}."))

            stage = STEP_IMAGES
            channel.emit(step_update(
                STEP_IMAGES, "in_progress", f"Starting image generation for {len(pending)} slides..."
            ))
            slides = await self._generate_images(pending, channel)
            with_images = sum(1 for s in slides if s.image_url)
            channel.emit(step_update(
                STEP_IMAGES, "completed",
                f"Image generation process finished ({with_images}/{len(slides)} images).",
            ))

            stage = STEP_FINALIZE
            channel.emit(step_update(STEP_FINALIZE, "in_progress", "Finalizing presentation..."))
            channel.emit(step_update(STEP_FINALIZE, "completed", "Presentation ready!"))
            channel.emit(final_event(request.presentation_id, slides, "Presentation generated successfully!"))
            logger.info("Generated %d slides for presentation %s", len(slides), request.presentation_id)
            return slides
        except AuthenticationError as e:
            logger.warning("Generation refused for presentation %s: %s", request.presentation_id, e)
            channel.emit(error_event(str(e), stage))
        except GenerationError as e:
            logger.error("Generation failed at %s for presentation %s: %s", stage, request.presentation_id, e)
            channel.emit(error_event(str(e), stage))
        except Exception:
            logger.exception("Unexpected failure at %s for presentation %s", stage, request.presentation_id)
            channel.emit(error_event(
                "An internal server error occurred during presentation generation.", stage
            ))
        finally:
            channel.close()
        return None

    async def _draft_slides(self, system_prompt: str, user_prompt: str) -> list:
        try:
            raw = await self.chat.complete(
                system_prompt,
                user_prompt,
                temperature=self.temperature,
                json_response=True,
                max_tokens=self.max_tokens,
            )
        except LLMError as e:
            raise GenerationError(f"Failed to generate presentation content: {e}") from e

        outcome = locate_slides(raw)
        if not isinstance(outcome, Found):
            logger.error("Could not parse LLM slides: %s. Raw: %.500r", outcome.reason, raw)
            raise ParseError("Failed to parse AI-generated content.")
        logger.debug("Located %d slide candidates via %s", len(outcome.items), outcome.strategy)
        return outcome.items

    def _save_drafts(self, presentation_id: str, drafts: List[SlideDraft]) -> List[_PendingImage]:
        pending = []
        for order, draft in enumerate(drafts):
            slide = self.slide_store.create_slide(presentation_id, draft.title, draft.content, None, order)
            pending.append(_PendingImage(slide=slide, image_prompt=draft.image_prompt))
        return pending

    async def _generate_images(self, pending: List[_PendingImage], channel: ProgressChannel) -> List[PersistedSlide]:
        semaphore = asyncio.Semaphore(self.image_concurrency)
        total = len(pending)

        async def one(index: int, item: _PendingImage) -> PersistedSlide:
            slide = item.slide
            step = slide_step_id(slide.id)
            async with semaphore:
                channel.emit(step_update(
                    step, "in_progress",
                    f'Generating image {index + 1}/{total} for slide: "{slide.title}"...',
                    slide_id=slide.id, slide_title=slide.title,
                ))
                try:
                    image_url = await self._create_image(item.image_prompt)
                    updated = self.slide_store.update_slide(slide.id, image_url=image_url)
                except Exception as e:
                    logger.warning("Image generation failed for slide %s: %s", slide.id, e)
                    channel.emit(step_update(
                        step, "error", f'Failed to generate image for "{slide.title}". Skipping.',
                        slide_id=slide.id, slide_title=slide.title,
                    ))
                    return slide
                channel.emit(step_update(
                    step, "completed", f'Image for "{slide.title}" ready.',
                    slide_id=slide.id, slide_title=slide.title, image_url=image_url,
                ))
                return updated

        # gather keeps result order aligned with slide order even when completions interleave
        return list(await asyncio.gather(*(one(i, item) for i, item in enumerate(pending))))

    async def _create_image(self, prompt: str) -> str:
        image = await self.images.generate(prompt)
        return self.object_storage.upload(image_object_key(), image, "image/png")
