from typing import Awaitable, Callable, Optional

from discord import ButtonStyle, Interaction
from discord.ui import Button, View
from loguru import logger

from .state import ViewMode

ButtonHandler = Callable[[Interaction, str], Awaitable[None]]

# 按鈕 custom_id
REWIND = "rewind"
PLAY_PAUSE = "play_pause"
SKIP = "skip"
VIEW_TOGGLE = "view_toggle"


class MusicPlayerButtons(View):
    def __init__(self, button_handler_callback: Optional[ButtonHandler], is_paused: bool = False,
                 view_mode: ViewMode = ViewMode.NOW_PLAYING):
        """
        初始化音樂播放器按鈕 View
        :param button_handler_callback: 處理按鈕事件的 callback
        :param is_paused: 暫停中時播放鍵顯示 ▶️
        :param view_mode: 目前的畫面，切換鍵顯示另一個畫面的名稱
        """
        super().__init__(timeout=None)
        self.button_handler_callback = button_handler_callback

        # ---- 按鈕設定 ----
        self.rewind_button = Button(emoji="⏮️", style=ButtonStyle.grey, custom_id=REWIND, row=0)
        self.play_pause_button = Button(emoji="▶️" if is_paused else "⏸️", style=ButtonStyle.blurple,
                                        custom_id=PLAY_PAUSE, row=0)
        self.skip_button = Button(emoji="⏭️", style=ButtonStyle.grey, custom_id=SKIP, row=0)
        toggle_label = "📋 佇列" if view_mode is ViewMode.NOW_PLAYING else "📊 正在播放"
        self.view_toggle_button = Button(label=toggle_label, style=ButtonStyle.grey, custom_id=VIEW_TOGGLE, row=0)

        for button in (self.rewind_button, self.play_pause_button, self.skip_button, self.view_toggle_button):
            button.callback = self.button_callback
            self.add_item(button)

    async def button_callback(self, interaction: Interaction):
        """
        處理所有音樂控制按鈕的 callback
        """
        await interaction.response.defer()
        button_action = interaction.data.get("custom_id")
        if not button_action:
            logger.error("[MusicPlayerButtons] 按鈕回調中找不到 custom_id")
            return
        logger.info(f"[MusicPlayerButtons] 收到按鈕事件: {button_action}")
        if self.button_handler_callback:
            try:
                await self.button_handler_callback(interaction, button_action)
            except Exception as e:
                logger.exception(f"[MusicPlayerButtons] 處理按鈕 callback 時發生錯誤: {button_action}，{e}")
        else:
            logger.error("[MusicPlayerButtons] 未設置 button_handler_callback，無法處理按鈕事件")
