"""
Prompt Builder Service
Constructs the prompts used to generate and refine agent content
"""
import re
from typing import Dict, List, Any, Optional
import logging

from app.schemas import ChatMessage, ConnectedOutput, ExtractedFrame, ProfileData, VideoContext

logger = logging.getLogger(__name__)

TRANSCRIPT_EXCERPT_CHARS = 1000
MANUAL_TRANSCRIPT_EXCERPT_CHARS = 2000
IMAGE_PROMPT_MAX_CHARS = 1000

GENERATION_TEMPERATURE = 0.7
THUMBNAIL_CONCEPT_MAX_TOKENS = 800

SYSTEM_PROMPTS = {
    "title": "You are an expert YouTube title creator. Create engaging, SEO-friendly titles that maximize "
             "click-through rates while accurately representing the video content. Keep titles under 60 "
             "characters when possible.",
    "description": "You are an expert YouTube description writer. Create comprehensive, SEO-optimized descriptions "
                   "that include relevant keywords, provide value to viewers, and encourage engagement. Include "
                   "timestamps if applicable.",
    "thumbnail": "You are an expert YouTube thumbnail designer. Describe compelling thumbnail concepts that grab "
                 "attention, clearly communicate the video's value, and follow YouTube best practices. Focus on "
                 "visual elements, text overlay suggestions, and color schemes.",
    "tweets": "You are an expert social media marketer. Create engaging Twitter/X threads that promote YouTube "
              "videos. Write concise, engaging tweets that drive traffic to the video while providing value to "
              "the Twitter audience.",
}

REFINE_GUIDELINES = {
    "title": """
- Keep titles under 60 characters
- Make them engaging and clickable
- Include relevant keywords
- Avoid clickbait but create curiosity""",
    "description": """
- Include relevant keywords naturally
- Structure with clear sections
- Add timestamps if mentioned
- Include calls-to-action
- Optimize for SEO""",
    "thumbnail": """
- Describe visual elements clearly
- Suggest compelling text overlays
- Recommend color schemes
- Focus on eye-catching composition
- Consider mobile visibility""",
    "tweets": """
- Keep within Twitter/X character limits
- Make each tweet valuable standalone
- Include relevant hashtags
- Create engaging hooks
- Encourage retweets and engagement""",
}

_TEXT_OVERLAY_PATTERNS = [
    re.compile(r"text overlay[:\s]*[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"suggested text[:\s]*[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"text[:\s]*[\"']([^\"']+)[\"']", re.IGNORECASE),
]


def max_tokens_for(agent_type: str) -> int:
    return 500 if agent_type == "description" else 300


def update_marker(agent_type: str) -> str:
    return f"UPDATED {agent_type.upper()}:"


def extract_updated_draft(response: str, agent_type: str, current_draft: str) -> str:
    """Text after the UPDATED <TYPE>: marker, or current_draft if the marker is missing or nothing follows it"""
    marker = update_marker(agent_type)
    index = response.find(marker)
    if index == -1:
        return current_draft
    return response[index + len(marker):].strip() or current_draft


class PromptBuilder:
    """
    Builds prompts from the shared generation context: video, connected
    agent outputs and channel profile. Sections with no data are omitted.
    """

    def get_system_prompt(self, agent_type: str) -> str:
        return SYSTEM_PROMPTS.get(agent_type, SYSTEM_PROMPTS["title"])

    def get_refine_system_prompt(self, agent_type: str) -> str:
        return f"""You are an AI assistant helping to refine {agent_type} content for YouTube videos.
When the user asks for changes or regeneration, you MUST create NEW content that is DIFFERENT from the current draft while incorporating their feedback.

IMPORTANT:
- If the user asks to regenerate, create something COMPLETELY NEW based on their instructions
- Do NOT return the same or similar content as the current draft
- The updated content should reflect the user's specific requests

When responding, provide:
1. A friendly response acknowledging their request
2. The NEW {agent_type} that incorporates their feedback

Format your response as:
[Your conversational response]

{update_marker(agent_type)}
[The completely new or significantly modified content]

Important guidelines:""" + REFINE_GUIDELINES.get(agent_type, "")

    # --- Shared sections ---

    def _transcript_section(self, video: VideoContext, label: str = "Video Transcription") -> str:
        section = ""
        if video.transcript:
            section += f"{label}: {video.transcript[:TRANSCRIPT_EXCERPT_CHARS]}...\n\n"
        if video.manual_transcripts:
            section += "Manual Transcriptions:\n"
            for index, transcript in enumerate(video.manual_transcripts, start=1):
                section += f"\n--- Transcription {index} ({transcript.file_name}) ---\n"
                section += f"Format: {transcript.format.upper()}\n"
                section += f"Content: {transcript.text[:MANUAL_TRANSCRIPT_EXCERPT_CHARS]}...\n"
            section += "\n"
        return section

    def _connected_section(self, outputs: List[ConnectedOutput]) -> str:
        if not outputs:
            return ""
        lines = "".join(f"{o.type}: {o.content}\n" for o in outputs)
        return f"Related content from other agents:\n{lines}\n"

    def _profile_section(self, profile: Optional[ProfileData], heading: str) -> str:
        if not profile:
            return ""
        section = f"{heading}:\n"
        section += f"Channel: {profile.channel_name} ({profile.niche})\n"
        section += f"Content Type: {profile.content_type}\n"
        if profile.tone:
            section += f"Tone: {profile.tone}\n"
        if profile.target_audience:
            section += f"Target Audience: {profile.target_audience}\n"
        return section

    # --- Generation ---

    def build_generation_prompt(
        self,
        agent_type: str,
        video: VideoContext,
        connected_outputs: List[ConnectedOutput],
        profile: Optional[ProfileData] = None,
    ) -> str:
        prompt = f"Generate {agent_type} content for a YouTube video.\n\n"
        if video.title:
            prompt += f"Video Title: {video.title}\n"
        prompt += self._transcript_section(video)
        prompt += self._connected_section(connected_outputs)
        prompt += self._profile_section(profile, "Channel Information")
        return prompt

    # --- Refinement ---

    def build_refine_prompt(
        self,
        agent_type: str,
        current_draft: str,
        user_message: str,
        chat_history: List[ChatMessage],
        video: Optional[VideoContext],
        connected_outputs: List[ConnectedOutput],
        profile: Optional[ProfileData] = None,
    ) -> str:
        prompt = f"CURRENT {agent_type.upper()} (that needs to be changed): \"{current_draft}\"\n\n"
        prompt += "Note: The user wants this regenerated/changed. Do NOT return the same content.\n\n"

        if chat_history:
            prompt += "Previous conversation:\n"
            for entry in sorted(chat_history, key=lambda m: m.timestamp):
                speaker = "User" if entry.role == "user" else "Assistant"
                prompt += f"{speaker}: {entry.message}\n"
            prompt += "\n"

        if video:
            prompt += self._transcript_section(video, label="Video context")
        prompt += self._connected_section(connected_outputs)
        profile_section = self._profile_section(profile, "Channel Profile")
        if profile_section:
            prompt += profile_section + "\n"

        prompt += f"User: {user_message}\n\nPlease provide your response following the format specified in the system prompt."
        return prompt

    # --- Thumbnails ---

    def build_thumbnail_concept_content(
        self,
        video: VideoContext,
        frames: List[ExtractedFrame],
        connected_outputs: List[ConnectedOutput],
        profile: Optional[ProfileData] = None,
        additional_context: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Multimodal user turn: the concept brief followed by the candidate frames"""
        brief = "Create an eye-catching YouTube thumbnail with the following requirements:\n\n"
        if video.title:
            brief += f"Video Title: {video.title}\n"
        if video.transcript:
            brief += f"\nVideo Content Summary: {video.transcript[:500]}...\n"
        for transcript in video.manual_transcripts:
            brief += f"\n--- {transcript.file_name} ({transcript.format.upper()}) ---\n{transcript.text[:800]}...\n"
        titles = [o.content for o in connected_outputs if o.type == "title"]
        if titles:
            brief += "\nRelated content:\n" + "".join(f"- Title suggestion: {t}\n" for t in titles)
        if profile:
            brief += f"\nChannel Style:\n- {profile.channel_name} ({profile.niche})\n- Content Type: {profile.content_type}\n"
            if profile.tone:
                brief += f"- Tone: {profile.tone}\n"
        if additional_context:
            brief += f"\nSpecific requirements: {additional_context}\n"
        brief += ("\n\nAnalyze these images and describe the perfect YouTube thumbnail based on them. Be specific "
                  "about visual elements, colors, composition, and text overlay suggestions.")

        content: List[Dict[str, Any]] = [{"type": "text", "text": brief}]
        for frame in frames:
            content.append({"type": "image_url", "image_url": {"url": frame.data_url, "detail": "high"}})
        return content

    def extract_text_overlay(self, concept: str, connected_outputs: List[ConnectedOutput]) -> Optional[str]:
        for pattern in _TEXT_OVERLAY_PATTERNS:
            match = pattern.search(concept)
            if match:
                return match.group(1).strip()
        short_titles = [o.content for o in connected_outputs if o.type == "title" and len(o.content) < 30]
        return short_titles[0] if short_titles else None

    def build_thumbnail_image_prompt(
        self,
        concept: str,
        video: VideoContext,
        connected_outputs: List[ConnectedOutput],
        profile: Optional[ProfileData] = None,
        additional_context: Optional[str] = None,
    ) -> str:
        prompt = "Create a YouTube thumbnail based on this video content:\n\n"
        title = next((o.content for o in connected_outputs if o.type == "title" and o.content.strip()), None)
        if title:
            prompt += f"VIDEO TITLE: {title}\n\n"
        if video.transcript:
            prompt += f"VIDEO CONTENT: {video.transcript[:300]}...\n\n"
        prompt += f"VISUAL CONCEPT: {concept[:400]}\n\n"

        prompt += "DESIGN REQUIREMENTS:\n"
        overlay = self.extract_text_overlay(concept, connected_outputs)
        if overlay:
            prompt += f"- Main text overlay should say: \"{overlay}\"\n"
        prompt += "- High contrast and vibrant colors\n- Professional quality\n- 16:9 aspect ratio\n"

        if profile:
            prompt += f"\nCHANNEL STYLE: {profile.channel_name} - {profile.niche}\n"
            if profile.tone:
                prompt += f"Tone: {profile.tone}\n"
        if additional_context:
            prompt += f"\nSPECIFIC REQUIREMENTS: {additional_context}\n"

        return prompt[:IMAGE_PROMPT_MAX_CHARS]

    def build_thumbnail_refine_image_prompt(self, user_message: str, updated_concept: str) -> str:
        prompt = (
            "Modify this YouTube thumbnail according to the request below. Keep the overall layout "
            "unless the request says otherwise.\n\n"
            f"REQUEST: {user_message}\n\n"
            f"UPDATED CONCEPT: {updated_concept}\n"
        )
        return prompt[:IMAGE_PROMPT_MAX_CHARS]
